"""
Configuration management and loading.

Holds the tier catalog and pipeline tuning values. Configuration is loaded
once at process start and validated strictly so a broken catalog rejects
startup instead of failing mid-run.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List

import yaml


TIER_CLASSES = ("small", "regular", "large")
LATENCY_CLASSES = ("fast", "standard", "slow")
COMPLEXITY_LEVELS = (1, 2, 3, 4, 5)


@dataclass(frozen=True)
class TierConfig:
    """One completion tier with its context window, pricing and TPM quota.

    Prices are USD per 1M tokens.
    """
    id: str
    tier_class: str
    max_context: int
    max_completion: int
    price_input: float
    price_output: float
    tpm: int
    latency_class: str = "standard"
    description: str = ""

    def __post_init__(self):
        """Validate tier values are coherent."""
        if not self.id or not self.id.strip():
            raise ValueError("tier id is required and cannot be empty")
        if self.tier_class not in TIER_CLASSES:
            raise ValueError(f"tier_class must be one of: {list(TIER_CLASSES)}")
        if self.latency_class not in LATENCY_CLASSES:
            raise ValueError(f"latency_class must be one of: {list(LATENCY_CLASSES)}")
        if self.max_context <= 0:
            raise ValueError(f"max_context for {self.id} must be > 0")
        if self.max_completion <= 0:
            raise ValueError(f"max_completion for {self.id} must be > 0")
        if self.max_completion > self.max_context:
            raise ValueError(
                f"max_completion ({self.max_completion}) exceeds max_context "
                f"({self.max_context}) for {self.id}"
            )
        if self.price_input < 0 or self.price_output < 0:
            raise ValueError(f"prices for {self.id} cannot be negative")
        if self.tpm <= 0:
            raise ValueError(f"tpm for {self.id} must be > 0")

    @property
    def average_price(self) -> float:
        """Mean of input and output unit price."""
        return (self.price_input + self.price_output) / 2


@dataclass(frozen=True)
class AnalysisSettings:
    """Token budgets and pacing for the analysis pipeline."""
    summary_target_tokens: int = 1500
    analysis_max_tokens: int = 2000
    max_issue_tokens: int = 25000
    batch_size: int = 25
    request_delay: float = 2.0  # seconds between items
    batch_delay: float = 0.0  # seconds between batches
    request_timeout: float = 60.0  # seconds per tier invocation

    def __post_init__(self):
        """Validate analysis settings are positive."""
        for name in ("summary_target_tokens", "analysis_max_tokens", "max_issue_tokens", "batch_size"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        for name in ("request_delay", "batch_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")


@dataclass(frozen=True)
class EstimatorConfig:
    """Complete estimator configuration."""
    tiers: Dict[str, TierConfig]
    cost_ranges: Dict[int, str]
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)

    def __post_init__(self):
        """Reject incomplete catalogs and cost tables."""
        missing = [name for name in TIER_CLASSES if name not in self.tiers]
        if missing:
            raise ValueError(f"Missing tier configuration for: {missing}")
        for name, tier in self.tiers.items():
            if tier.tier_class != name:
                raise ValueError(f"Tier '{name}' declares tier_class '{tier.tier_class}'")
        ids = [tier.id for tier in self.tiers.values()]
        if len(set(ids)) != len(ids):
            raise ValueError("Tier ids must be unique")
        for level in COMPLEXITY_LEVELS:
            if not self.cost_ranges.get(level):
                raise ValueError(f"Missing cost range for complexity level {level}")

    def tier_catalog(self) -> List[TierConfig]:
        """Tiers ordered small, regular, large."""
        return [self.tiers[name] for name in TIER_CLASSES]

    def get_tier(self, tier_id: str) -> TierConfig:
        """Look up a tier by its model id.

        Raises:
            ValueError: If no tier has this id
        """
        for tier in self.tiers.values():
            if tier.id == tier_id:
                return tier
        raise ValueError(f"Unknown tier: {tier_id}")

    def cost_range(self, complexity: int) -> str:
        """Cost-range label for a complexity level."""
        return self.cost_ranges.get(complexity, "$0-$0")

    def with_analysis(self, **overrides) -> "EstimatorConfig":
        """Copy of this config with some analysis settings replaced."""
        return replace(self, analysis=replace(self.analysis, **overrides))


DEFAULT_TIERS = {
    "small": TierConfig(
        id="llama-3.1-8b-instant",
        tier_class="small",
        max_context=8192,
        max_completion=1024,
        price_input=0.05,
        price_output=0.08,
        tpm=6000,
        latency_class="fast",
        description="Fast & cheap - ideal for simple issues and summarization",
    ),
    "regular": TierConfig(
        id="openai/gpt-oss-20b",
        tier_class="regular",
        max_context=32768,
        max_completion=2048,
        price_input=0.075,
        price_output=0.30,
        tpm=8000,
        latency_class="standard",
        description="Balanced - good for medium complexity issues",
    ),
    "large": TierConfig(
        id="llama-3.3-70b-versatile",
        tier_class="large",
        max_context=131072,
        max_completion=2048,
        price_input=0.59,
        price_output=0.79,
        tpm=12000,
        latency_class="slow",
        description="Powerful - best for complex issues requiring deep analysis",
    ),
}

DEFAULT_COST_RANGES = {
    1: "$20-$50",
    2: "$50-$120",
    3: "$120-$300",
    4: "$300-$600",
    5: "$600-$1000",
}


def default_config() -> EstimatorConfig:
    """Built-in configuration used when no config file is given."""
    return EstimatorConfig(
        tiers=dict(DEFAULT_TIERS),
        cost_ranges=dict(DEFAULT_COST_RANGES),
        analysis=AnalysisSettings(),
    )


def load_estimator_config(path: str) -> EstimatorConfig:
    """Load and validate estimator configuration from YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated EstimatorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Estimator config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'tiers', 'cost_ranges', 'analysis'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'tiers' not in raw_config:
        raise ValueError("Missing required 'tiers' section")
    tiers_data = raw_config['tiers']
    if not isinstance(tiers_data, dict):
        raise ValueError("'tiers' must be a dictionary")

    unknown_tiers = set(tiers_data.keys()) - set(TIER_CLASSES)
    if unknown_tiers:
        raise ValueError(f"Unknown tier classes: {unknown_tiers}")

    tiers = {}
    for tier_class, tier_data in tiers_data.items():
        if not isinstance(tier_data, dict):
            raise ValueError(f"Tier '{tier_class}' must be a dictionary")
        tiers[tier_class] = _parse_tier_config(tier_data, tier_class)

    if 'cost_ranges' not in raw_config:
        raise ValueError("Missing required 'cost_ranges' section")
    cost_ranges = _parse_cost_ranges(raw_config['cost_ranges'])

    analysis = _parse_analysis_settings(raw_config.get('analysis') or {})

    return EstimatorConfig(tiers=tiers, cost_ranges=cost_ranges, analysis=analysis)


def _parse_tier_config(data: Dict, tier_class: str) -> TierConfig:
    """Parse and validate one tier entry.

    Raises:
        ValueError: If configuration is invalid
    """
    path = f"tiers.{tier_class}"
    required_keys = {'id', 'max_context', 'max_completion', 'price_input', 'price_output', 'tpm'}
    allowed_keys = required_keys | {'latency_class', 'description'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for key in sorted(required_keys):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")

    if not isinstance(data['id'], str):
        raise ValueError(f"'id' in {path} must be a string")
    for key in ('max_context', 'max_completion', 'tpm'):
        if not isinstance(data[key], int) or isinstance(data[key], bool):
            raise ValueError(f"'{key}' in {path} must be an integer")
    for key in ('price_input', 'price_output'):
        if not isinstance(data[key], (int, float)) or isinstance(data[key], bool):
            raise ValueError(f"'{key}' in {path} must be a number")

    latency_class = str(data.get('latency_class', 'standard')).lower()

    try:
        return TierConfig(
            id=data['id'],
            tier_class=tier_class,
            max_context=data['max_context'],
            max_completion=data['max_completion'],
            price_input=float(data['price_input']),
            price_output=float(data['price_output']),
            tpm=data['tpm'],
            latency_class=latency_class,
            description=str(data.get('description', '')),
        )
    except ValueError as e:
        raise ValueError(f"Invalid {path}: {e}")


def _parse_cost_ranges(data) -> Dict[int, str]:
    """Parse the complexity -> cost label table."""
    if not isinstance(data, dict):
        raise ValueError("'cost_ranges' must be a dictionary")

    cost_ranges = {}
    for key, label in data.items():
        try:
            level = int(key)
        except (TypeError, ValueError):
            raise ValueError(f"Cost range key must be a complexity level 1-5, got: {key!r}")
        if level not in COMPLEXITY_LEVELS:
            raise ValueError(f"Cost range key must be a complexity level 1-5, got: {key!r}")
        if not isinstance(label, str) or not label.strip():
            raise ValueError(f"Cost range for complexity {level} must be a non-empty string")
        cost_ranges[level] = label.strip()
    return cost_ranges


def _parse_analysis_settings(data) -> AnalysisSettings:
    """Parse the optional analysis section, defaulting missing values."""
    if not isinstance(data, dict):
        raise ValueError("'analysis' must be a dictionary")

    defaults = AnalysisSettings()
    int_keys = {'summary_target_tokens', 'analysis_max_tokens', 'max_issue_tokens', 'batch_size'}
    float_keys = {'request_delay', 'batch_delay', 'request_timeout'}
    unknown_keys = set(data.keys()) - int_keys - float_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in analysis: {unknown_keys}")

    values = {}
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in analysis must be a number")
        if key in int_keys:
            if not isinstance(value, int):
                raise ValueError(f"'{key}' in analysis must be an integer")
            values[key] = value
        else:
            values[key] = float(value)

    return replace(defaults, **values)


def summarization_system_prompt(config: EstimatorConfig) -> str:
    """System prompt for the summarization tier."""
    return f"""You are a technical analyst specializing in creating concise summaries for software development estimation.

Your role:
- Extract key technical details from GitHub issues
- Focus on information needed for accurate cost estimation
- Maintain factual accuracy while being concise
- Identify complexity indicators, dependencies, and technical requirements

CRITICAL: Keep summaries under {config.analysis.summary_target_tokens} tokens. Focus on:
- Core functionality to implement/fix
- Technical complexity indicators
- Dependencies and integration points
- Testing requirements
- Mentioned technologies or frameworks

Respond with ONLY the concise summary, no additional commentary."""


def analysis_system_prompt(config: EstimatorConfig) -> str:
    """System prompt for the structured analysis call."""
    cost_ranges_text = "\n".join(
        f"{level}: {config.cost_range(level)}" for level in COMPLEXITY_LEVELS
    )
    return f"""You are an expert software engineer and project estimator specializing in GitHub issue analysis.

ROLE: Analyze software development issues and provide realistic assessments for project planning.

COMPLEXITY SCALE:
1: Trivial (1-2 hours) - Simple bugs, docs, minor text changes
2: Simple (2-8 hours) - Minor features, CSS changes, small enhancements
3: Moderate (1-3 days) - Multi-component features, API integrations
4: Complex (3-10 days) - Complex features, database changes, major refactoring
5: Very Complex (2+ weeks) - Major features, architectural changes

COST RANGES (based on complexity):
{cost_ranges_text}

CATEGORIES:
- bug: Fixing broken functionality
- feature: Adding new functionality
- enhancement: Improving existing functionality
- documentation: Documentation changes only
- refactor: Code restructuring without changing behavior

RESPONSE FORMAT: You MUST respond with valid JSON using this exact structure:
{{
  "complexity": 1-5,
  "estimated_cost": "$XXX-XXX",
  "category": "bug|feature|documentation|enhancement|refactor",
  "confidence": 0.1-1.0,
  "key_factors": ["factor1", "factor2", "factor3"],
  "potential_risks": ["risk1", "risk2"],
  "recommended_actions": ["action1", "action2"],
  "ai_analysis": "Brief reasoning for the assessment"
}}

CRITICAL: Always respond with valid JSON only. No additional text."""
