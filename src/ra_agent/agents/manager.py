"""Registry that runs named agents against a shared AI service."""

from __future__ import annotations

import logging
from typing import Any, Callable

from ra_agent.agents.analyst import BIAnalystAgent
from ra_agent.agents.architect import DatabaseArchitectAgent
from ra_agent.agents.base import AgentResponse, BaseAgent, ChatService
from ra_agent.agents.summarizer import SummarizerAgent

logger = logging.getLogger(__name__)


class AgentManager:
    """Holds the registered agents and lazily creates the chat service.

    Args:
        service_factory: Builds the chat service; may raise ``RuntimeError``
            when no API key is configured.
    """

    def __init__(self, service_factory: Callable[[], ChatService] | None = None):
        self.agents: dict[str, BaseAgent] = {}
        self.service: ChatService | None = None
        self._service_factory = service_factory
        for agent in (DatabaseArchitectAgent(), BIAnalystAgent(), SummarizerAgent()):
            self.register(agent)

    def register(self, agent: BaseAgent) -> None:
        self.agents[agent.name] = agent

    def initialize(self) -> bool:
        """Create the chat service. Returns False when it cannot be built."""
        if self._service_factory is None:
            logger.warning("No AI service configured. AI agents will be unavailable.")
            return False
        try:
            self.service = self._service_factory()
        except RuntimeError as e:
            logger.warning("AI service unavailable: %s", e)
            self.service = None
            return False
        return True

    def run(self, agent_name: str, context: dict[str, Any]) -> AgentResponse:
        """Execute a registered agent by name."""
        if self.service is None and not self.initialize():
            return AgentResponse(
                success=False,
                error="AI service is not initialized. Configure an API key with `ra set-key`.",
            )

        agent = self.agents.get(agent_name)
        if agent is None:
            return AgentResponse(success=False, error=f'Agent "{agent_name}" not found.')

        logger.info("Running agent: %s", agent_name)
        return agent.execute(context, self.service)
