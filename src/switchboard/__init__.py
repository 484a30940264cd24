"""Switchboard - plugin-extensible multi-provider AI orchestration.

Routes prompts to language-model agents, fans them out for consensus, and
lets agents call tools contributed by plugins.

Example:
    from switchboard.config import load_config
    from switchboard.runtime import Runtime

    async with Runtime(load_config()) as rt:
        result = await rt.orchestrator.route("List my open tasks", tools="all")
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
