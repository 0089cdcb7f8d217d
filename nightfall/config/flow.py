"""Game flow configuration with YAML file support.

A flow configuration supplies the ordered night steps, the per-phase
durations, the role->camp map and the rule variants for a match. Matches
refer to one by configuration id; unknown or missing ids, and any missing
keys, fall back to the builtin defaults.

Configuration file lookup (first hit wins):
1. Explicit path
2. NIGHTFALL_FLOW_CONFIG environment variable
3. ./nightfall_flow.yaml
4. ~/.config/nightfall/nightfall_flow.yaml
"""

import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from nightfall.engine.roles import ROLE_SKILL_CODES, Camp, Role
from nightfall.engine.state import NightStep, RuleVariants
from nightfall.exceptions import ConfigError

logger = logging.getLogger(__name__)

FLOW_CONFIG_ENV = "NIGHTFALL_FLOW_CONFIG"
DEFAULT_CONFIG_ID = "standard"
DEFAULT_CONFIG_FILENAME = "nightfall_flow.yaml"
DEFAULT_CONFIG_PATHS = [
    Path.cwd() / DEFAULT_CONFIG_FILENAME,
    Path.home() / ".config" / "nightfall" / DEFAULT_CONFIG_FILENAME,
]

DEFAULT_NIGHT_STEPS: list[NightStep] = [
    NightStep(name="guard", skill_codes=["guard_protect"], duration=20),
    NightStep(name="werewolf", skill_codes=["werewolf_kill"], duration=30),
    NightStep(name="seer", skill_codes=["seer_check"], duration=15),
    NightStep(name="witch", skill_codes=["witch_save", "witch_poison"], duration=25),
    NightStep(name="hunter", skill_codes=["hunter_shoot"], duration=10),
]


class PhaseDurations(BaseModel):
    """Default duration, in seconds, of every timed window."""

    waiting: int = Field(default=10, gt=0, description="Re-check interval while the lobby is not ready")
    night: int = Field(default=60, gt=0, description="Night length when no night step applies")
    sheriff_signup: int = Field(default=20, gt=0)
    sheriff_speech: int = Field(default=60, gt=0, description="Per campaign speaker")
    sheriff_vote: int = Field(default=15, gt=0)
    day_speech: int = Field(default=120, gt=0, description="Per day speaker")
    leader_speech: int = Field(default=150, gt=0, description="Day speech of the leader")
    leader_call: int = Field(default=60, gt=0, description="Window for the leader to call a vote")
    voting: int = Field(default=30, gt=0)
    pk_speech: int = Field(default=30, gt=0, description="Per PK speaker")
    pk_vote: int = Field(default=30, gt=0)
    hunter_shot: int = Field(default=10, gt=0)
    sheriff_transfer: int = Field(default=300, gt=0)
    lease: int = Field(default=15, gt=0, description="Claim lease held while a transition is computed")


class FlowConfig(BaseModel):
    """Everything the orchestrator needs to know about one match configuration."""

    config_id: str = Field(default=DEFAULT_CONFIG_ID)
    night_steps: list[NightStep] = Field(default_factory=lambda: list(DEFAULT_NIGHT_STEPS))
    durations: PhaseDurations = Field(default_factory=PhaseDurations)
    role_to_camp: dict[str, Camp] = Field(default_factory=dict)
    rule_variants: RuleVariants = Field(default_factory=RuleVariants)

    @field_validator("night_steps")
    @classmethod
    def default_when_empty(cls, v: list[NightStep]) -> list[NightStep]:
        """An empty step list means "not configured"."""
        return v or list(DEFAULT_NIGHT_STEPS)

    def night_steps_for(self, roles: Iterable[Role]) -> list[NightStep]:
        """Night steps in order, keeping only steps a present role can act in."""
        present_codes: set[str] = set()
        for role in roles:
            present_codes.update(ROLE_SKILL_CODES.get(role, []))
        return [s for s in self.night_steps if any(code in present_codes for code in s.skill_codes)]

    def camp_for(self, role: Role) -> Camp:
        return Camp.from_role(role, self.role_to_camp)


class FlowConfigRegistry:
    """Flow configurations keyed by configuration id."""

    def __init__(
        self,
        configs: Optional[Iterable[FlowConfig]] = None,
        default_config_id: str = DEFAULT_CONFIG_ID,
    ):
        self._configs: dict[str, FlowConfig] = {}
        self.default_config_id = default_config_id
        for config in configs or []:
            self.register(config)

    def register(self, config: FlowConfig) -> None:
        self._configs[config.config_id] = config

    @property
    def config_ids(self) -> list[str]:
        return sorted(self._configs)

    def get(self, config_id: Optional[str] = None) -> FlowConfig:
        """Look up a configuration, falling back to the default, then to builtins."""
        if config_id and config_id in self._configs:
            return self._configs[config_id]
        if config_id:
            logger.debug(f"Flow config {config_id!r} not found, using default")
        if self.default_config_id in self._configs:
            return self._configs[self.default_config_id]
        return FlowConfig(config_id=config_id or self.default_config_id)


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; a missing or empty file yields an empty dict."""
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    return data


def _find_config_file(config_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file.

    Args:
        config_path: Explicit path to configuration file

    Returns:
        Path to configuration file if found, None otherwise
    """
    if config_path:
        if config_path.exists():
            return config_path
        return None

    env_path = os.environ.get(FLOW_CONFIG_ENV)
    if env_path:
        path = Path(env_path)
        return path if path.exists() else None

    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path

    return None


def parse_flow_config(config_id: str, data: Optional[dict[str, Any]]) -> FlowConfig:
    """Build one FlowConfig from its YAML mapping."""
    data = dict(data or {})
    data["config_id"] = config_id
    try:
        return FlowConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid flow config {config_id!r}: {e}") from e


def load_flow_registry(config_path: Optional[Path] = None) -> FlowConfigRegistry:
    """Load all flow configurations from file, or an empty (builtin) registry.

    Args:
        config_path: Optional explicit path to configuration file

    Returns:
        FlowConfigRegistry with every configuration found in the file
    """
    found_path = _find_config_file(config_path)
    if not found_path:
        logger.info("No flow config file found, using builtin defaults")
        return FlowConfigRegistry()

    config_data = _load_yaml_file(found_path)
    default_id = config_data.get("default_config_id", DEFAULT_CONFIG_ID)
    configs = [
        parse_flow_config(str(config_id), body)
        for config_id, body in (config_data.get("configs") or {}).items()
    ]
    logger.info(f"Loaded {len(configs)} flow config(s) from {found_path}")
    return FlowConfigRegistry(configs, default_config_id=default_id)


def save_default_config(path: Path) -> None:
    """Save the builtin flow configuration to a YAML file.

    Args:
        path: Path to save the configuration file
    """
    default_config = FlowConfig()
    config_dict = {
        "default_config_id": DEFAULT_CONFIG_ID,
        "configs": {
            DEFAULT_CONFIG_ID: default_config.model_dump(mode="json", exclude={"config_id"}),
        },
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def get_config_template() -> str:
    """Get a YAML configuration template with comments.

    Returns:
        YAML template string with documentation comments
    """
    return """# nightfall flow configuration
# ============================
# Each entry under "configs" is one match configuration, referenced by id.
# All values shown are defaults - only specify values you want to change.

default_config_id: standard

configs:
  standard:
    # Night windows in order. Steps whose skills no role in the match
    # owns are skipped. An empty list means "use the builtin steps".
    night_steps:
      - {name: guard, skill_codes: [guard_protect], duration: 20}
      - {name: werewolf, skill_codes: [werewolf_kill], duration: 30}
      - {name: seer, skill_codes: [seer_check], duration: 15}
      - {name: witch, skill_codes: [witch_save, witch_poison], duration: 25}
      - {name: hunter, skill_codes: [hunter_shoot], duration: 10}

    # Seconds per window
    durations:
      waiting: 10
      night: 60               # used when no night step applies
      sheriff_signup: 20
      sheriff_speech: 60      # per candidate
      sheriff_vote: 15
      day_speech: 120         # per speaker
      leader_speech: 150      # the leader speaks longer
      leader_call: 60
      voting: 30
      pk_speech: 30           # per tied player
      pk_vote: 30
      hunter_shot: 10
      sheriff_transfer: 300
      lease: 15               # claim held while a transition is computed

    # Role -> camp (werewolf, good, neutral). Unlisted roles use the
    # builtin two-camp map.
    role_to_camp: {}

    rule_variants:
      # Guard and Witch on the same kill target: the target still dies
      same_guard_same_save_kills: true

      witch_can_self_heal_n1: true
      witch_can_self_heal: false
      witch_can_use_both_potions: false
      guard_can_self_guard: true

      # parity | side_elimination | city_elimination
      win_mode: parity

      allow_wolf_self_explode: true
      allow_wolf_self_knife: false

      # The leader's ballot counts this much in elimination votes
      leader_vote_weight: 1.5

      # Round-1 sheriff campaign only at tables this large
      sheriff_campaign_min_players: 10

      # Tie-breaks
      max_pk_rounds: 2
      # A PK vote with no eligible ballots:
      # - peaceful_day: nobody is eliminated, next night starts
      # - rerun_pk: treated as a tie among the same candidates
      pk_no_vote_policy: peaceful_day

      hunter_can_shoot_if_poisoned: false
      min_players: 6
"""
