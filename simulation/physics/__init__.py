"""Liquid level process physics.

Modules:
    level_tank: Lagged first-order tank with deadtime and process noise
    noise: Injectable noise sources for sensor and plant perturbation
"""
