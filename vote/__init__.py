"""Persistence core for the ranked-choice voting platform."""
