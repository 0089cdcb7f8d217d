"""nightfall - phase orchestration for hidden-role werewolf games."""

__version__ = "0.1.0"
