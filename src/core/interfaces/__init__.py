"""Abstracciones del Core.

Protocols que implementan los adaptadores concretos: el core depende de
contratos, no de implementaciones.
"""
