"""Scheduled creation of tournament instances."""

from walletwars.services.deployment.scheduler import TournamentDeploymentScheduler, tournament_name

__all__ = ["TournamentDeploymentScheduler", "tournament_name"]
