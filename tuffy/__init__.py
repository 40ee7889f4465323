"""Liveness analysis, linear scan register allocation, instruction-selection helpers and a rule-driven selector generator."""

__version__ = "0.1.0"