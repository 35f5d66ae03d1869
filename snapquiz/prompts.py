from __future__ import annotations

import dataclasses
import json
import logging
import pathlib
import typing as t

from .errors import ConfigError

logger = logging.getLogger(__name__)

JsonDict = dict[str, t.Any]

DATA_DIR = pathlib.Path(__file__).resolve().parent / "data"
DEFAULT_PROMPTS_PATH = DATA_DIR / "prompts.json"
DEFAULT_TRAINING_DATA_PATH = DATA_DIR / "training_data.json"

GENERIC_TOPIC = "generic"
MAX_WORKED_EXAMPLES = 3

TOPIC_EXAMPLE_PRIORITIES: dict[str, tuple[str, ...]] = {
    "maths": ("maths-worksheet",),
    "english": ("spelling-list", "grammar-exercises", "vocabulary-context"),
    "science": ("science-diagram",),
    "history": ("history-timeline",),
    "generic": ("spelling-list", "maths-worksheet", "reading-comprehension"),
}

FALLBACK_PROMPT = """You are an educational quiz generator for secondary school students.

Analyze this homework image and generate a 10-question multiple choice quiz from its content{subjectHint}.

Requirements:
- Exactly 10 questions
- Each question has exactly 4 options (labeled A, B, C, D)
- One correct answer per question
- Questions test understanding, not just memorization
- Include brief explanations for correct answers

Return ONLY a valid JSON object in this format:
{
  "topic": "generic",
  "confidence": 0.5,
  "questions": [
    {
      "type": "mcq",
      "question": "...",
      "options": ["A", "B", "C", "D"],
      "correctIndex": 0,
      "explanation": "..."
    }
  ]
}"""


@dataclasses.dataclass(frozen=True)
class FormatSpec:
    description: str
    example: JsonDict


@dataclasses.dataclass(frozen=True)
class TopicPrompt:
    system: str
    prefix: str
    instructions: tuple[str, ...]
    requirements: tuple[str, ...]
    format: FormatSpec
    suffix: str


@dataclasses.dataclass(frozen=True)
class TypeDistribution:
    mcq: float
    fill_blank: float
    short_answer: float

    @staticmethod
    def from_dict(data: JsonDict) -> "TypeDistribution":
        return TypeDistribution(
            mcq=float(data.get("mcq", 0.0)),
            fill_blank=float(data.get("fillBlank", 0.0)),
            short_answer=float(data.get("shortAnswer", 0.0)),
        )


@dataclasses.dataclass(frozen=True)
class TrainingExample:
    id: str
    name: str
    description: str
    indicators: tuple[str, ...]
    recommended_distribution: TypeDistribution


@dataclasses.dataclass(frozen=True)
class PromptSettings:
    question_count: int
    option_count: int
    classification_threshold: float
    topics: tuple[str, ...]
    question_type_distribution: dict[str, TypeDistribution]


@dataclasses.dataclass(frozen=True)
class PromptConfig:
    version: str
    vision: dict[str, TopicPrompt]
    text: TopicPrompt | None
    settings: PromptSettings
    examples: tuple[TrainingExample, ...] = ()


def _topic_prompt(name: str, data: JsonDict) -> TopicPrompt:
    try:
        user = data["user"]
        fmt = user["format"]
        return TopicPrompt(
            system=str(data["system"]),
            prefix=str(user["prefix"]),
            instructions=tuple(str(s) for s in user.get("instructions") or ()),
            requirements=tuple(str(s) for s in user["requirements"]),
            format=FormatSpec(description=str(fmt["description"]), example=dict(fmt["example"])),
            suffix=str(user["suffix"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Prompt template '{name}' is malformed: {e}") from e


def _read_json(path: pathlib.Path) -> JsonDict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Prompt file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Prompt file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Prompt file {path} must contain a JSON object")
    return data


def parse_prompt_config(prompts: JsonDict, training: JsonDict | None = None) -> PromptConfig:
    sections = prompts.get("prompts") or {}
    vision_raw = sections.get("vision") or {}
    if not isinstance(vision_raw, dict):
        raise ConfigError("prompts.vision must be an object keyed by topic")
    vision = {name: _topic_prompt(name, body) for name, body in vision_raw.items()}
    text = _topic_prompt("text", sections["text"]) if sections.get("text") else None

    s = prompts.get("settings") or {}
    try:
        settings = PromptSettings(
            question_count=int(s.get("questionCount", 10)),
            option_count=int(s.get("optionCount", 4)),
            classification_threshold=float(s.get("classificationThreshold", 0.4)),
            topics=tuple(s.get("topics") or vision.keys()),
            question_type_distribution={
                k: TypeDistribution.from_dict(v) for k, v in (s.get("questionTypeDistribution") or {}).items()
            },
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigError(f"Prompt settings are malformed: {e}") from e

    examples: list[TrainingExample] = []
    for raw in (training or {}).get("examples") or []:
        try:
            examples.append(
                TrainingExample(
                    id=str(raw["id"]),
                    name=str(raw["name"]),
                    description=str(raw.get("description") or ""),
                    indicators=tuple(str(i) for i in raw.get("indicators") or ()),
                    recommended_distribution=TypeDistribution.from_dict(raw.get("recommendedDistribution") or {}),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Training example is malformed: {e}") from e

    return PromptConfig(
        version=str(prompts.get("version") or "0"),
        vision=vision,
        text=text,
        settings=settings,
        examples=tuple(examples),
    )


def load_prompt_config(
    prompts_path: str | pathlib.Path | None = None,
    training_path: str | pathlib.Path | None = None,
) -> PromptConfig:
    """Load prompt templates and worked examples from disk.

    Meant to be called once at startup; the result is immutable and is passed
    to `PromptBuilder` explicitly.
    """
    prompts = _read_json(pathlib.Path(prompts_path or DEFAULT_PROMPTS_PATH))
    tpath = pathlib.Path(training_path or DEFAULT_TRAINING_DATA_PATH)
    training = _read_json(tpath) if tpath.exists() else None
    config = parse_prompt_config(prompts, training)
    logger.info("Loaded prompts v%s (%d topics, %d worked examples)", config.version, len(config.vision), len(config.examples))
    return config


def _percent(value: float) -> int:
    return int(value * 100 + 0.5)


def _subject_hint(subject: str | None) -> str:
    subject = (subject or "").strip()
    return f" about {subject}" if subject else ""


class PromptBuilder:
    def __init__(self, config: PromptConfig, *, include_examples: bool = True) -> None:
        self.config = config
        self.include_examples = include_examples

    @property
    def available_topics(self) -> tuple[str, ...]:
        return self.config.settings.topics

    @property
    def classification_threshold(self) -> float:
        return self.config.settings.classification_threshold

    def question_type_distribution(self, topic: str) -> TypeDistribution | None:
        dist = self.config.settings.question_type_distribution
        return dist.get(topic) or dist.get(GENERIC_TOPIC)

    def template_for(self, topic: str | None) -> TopicPrompt | None:
        vision = self.config.vision
        return vision.get(topic or GENERIC_TOPIC) or vision.get(GENERIC_TOPIC)

    def select_examples(self, topic: str | None) -> list[TrainingExample]:
        priorities = TOPIC_EXAMPLE_PRIORITIES.get(topic or GENERIC_TOPIC, TOPIC_EXAMPLE_PRIORITIES[GENERIC_TOPIC])
        return [ex for ex in self.config.examples if ex.id in priorities][:MAX_WORKED_EXAMPLES]

    def build_vision_prompt(self, topic: str | None = None, subject: str | None = None) -> str:
        template = self.template_for(topic)
        hint = _subject_hint(subject)
        if template is None:
            logger.warning("No prompt found for topic '%s', using built-in fallback", topic)
            return FALLBACK_PROMPT.replace("{subjectHint}", hint)
        if topic and topic not in self.config.vision:
            logger.info("No prompt template for topic '%s', using generic", topic)

        prompt = template.system + "\n\n"
        prompt += template.prefix.replace("{subjectHint}", hint) + "\n\n"
        if template.instructions:
            prompt += "\n".join(template.instructions) + "\n\n"

        examples = self.select_examples(topic) if self.include_examples else []
        if examples:
            prompt += render_examples_section(examples) + "\n\n"

        prompt += _render_tail(template)
        return prompt

    def build_text_prompt(self, text: str, subject: str | None = None) -> str:
        template = self.config.text
        if template is None:
            return self.build_vision_prompt(GENERIC_TOPIC, subject) + "\n\nHomework content:\n" + text
        prompt = template.system + "\n\n"
        prompt += template.prefix.replace("{subjectHint}", _subject_hint(subject)) + "\n\n"
        prompt += text + "\n\n"
        prompt += _render_tail(template)
        return prompt


def _render_tail(template: TopicPrompt) -> str:
    out = "Requirements:\n"
    out += "\n".join(f"- {r}" for r in template.requirements) + "\n\n"
    out += template.format.description + "\n"
    out += json.dumps(template.format.example, indent=2, ensure_ascii=False) + "\n\n"
    out += template.suffix
    return out


def render_examples_section(examples: t.Sequence[TrainingExample]) -> str:
    section = "Here are some examples of different homework types:\n\n"
    for index, example in enumerate(examples, start=1):
        dist = example.recommended_distribution
        section += f"Example {index}: {example.name}\n"
        section += f"Description: {example.description}\n"
        section += "Indicators:\n"
        for indicator in example.indicators:
            section += f"  - {indicator}\n"
        section += "\nRecommended distribution:\n"
        section += f"  - MCQ: {_percent(dist.mcq)}%\n"
        section += f"  - Fill-in-blank: {_percent(dist.fill_blank)}%\n"
        section += f"  - Short answer: {_percent(dist.short_answer)}%\n"
        section += "\n"
    return section
