"""Integrations package - External service clients"""
from konver.integrations.evolution_client import EvolutionClient, EvolutionConfig, EvolutionAPIError

__all__ = ["EvolutionClient", "EvolutionConfig", "EvolutionAPIError"]
