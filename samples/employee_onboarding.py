"""
Sample: Employee Onboarding with a Transactional Unit of Work

This sample demonstrates:
- Entities raising domain events
- Pre-commit handlers that can veto a transaction
- Post-commit handlers whose failures never undo the commit
- Dependency injection of handler dependencies
- Optional forwarding of committed events to RabbitMQ (set AMQP_HOST)

Run: python -m samples.employee_onboarding
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import List

from domainkit import (
    DIContainer,
    DomainEvent,
    DomainEventHandler,
    DomainEventHandlerRegistry,
    Entity,
    InMemoryDomainContext,
    PreCommitHandlerFailed,
    UnitOfWork,
)
from pubsub import AMQPConfig, AMQPConnection, EventPublisher, forward_to_broker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


# Domain Events
@dataclass(frozen=True)
class EmployeeHired(DomainEvent):
    employee_id: str
    name: str
    department: str


# Domain Entities
class Employee(Entity):
    """Employee entity with domain events."""

    def __init__(self, employee_id: str, name: str, department: str):
        super().__init__()
        self.id = employee_id
        self.name = name
        self.department = department

    @classmethod
    def hire(cls, employee_id: str, name: str, department: str) -> "Employee":
        employee = cls(employee_id, name, department)
        employee.raise_event(EmployeeHired(employee_id=employee_id, name=name, department=department))
        return employee


# Services
class HeadcountPolicy:
    """Maximum number of employees per department."""

    def __init__(self, limit: int = 2):
        self.limit = limit


class Mailbox:
    """Stand-in for an email service."""

    def __init__(self):
        self.sent: List[str] = []

    async def send(self, to: str, subject: str) -> None:
        logger.info(f"[Mailbox] Sending '{subject}' to {to}")
        self.sent.append(subject)


# Event Handlers
class EnforceHeadcount(DomainEventHandler):
    """Pre-commit: refuse hires above the department limit."""
    handles = EmployeeHired

    def __init__(self, context: InMemoryDomainContext, policy: HeadcountPolicy):
        self.context = context
        self.policy = policy

    async def handle(self, event: EmployeeHired) -> None:
        headcount = len(self.context.find(Employee, department=event.department))
        if headcount > self.policy.limit:
            raise ValueError(f"Department {event.department} is full ({headcount}/{self.policy.limit})")


class SendWelcomeEmail(DomainEventHandler):
    """Post-commit: welcome the new employee."""
    handles = EmployeeHired
    post_commit = True

    def __init__(self, mailbox: Mailbox):
        self.mailbox = mailbox

    async def handle(self, event: EmployeeHired) -> None:
        await self.mailbox.send(event.name, f"Welcome to {event.department}, {event.name}!")


async def main():
    """Run the onboarding sample."""
    logger.info("=== Employee Onboarding Sample ===")

    context = InMemoryDomainContext()

    container = DIContainer()
    container.register_instance(InMemoryDomainContext, context)
    container.register(HeadcountPolicy, lifetime='singleton')
    container.register(Mailbox, lifetime='singleton')

    registry = DomainEventHandlerRegistry(container)
    registry.register(EnforceHeadcount)
    registry.register(SendWelcomeEmail)

    connection = None
    if os.environ.get("AMQP_HOST"):
        connection = AMQPConnection(AMQPConfig.from_env())
        connection.connect()
        connection.declare_exchange("domain-events")
        container.register_instance(EventPublisher, EventPublisher(connection, "domain-events"))
        registry.register(forward_to_broker(EmployeeHired))

    uow = UnitOfWork(registry, context)

    try:
        logger.info("\n--- Hiring two engineers ---")

        async def hire_engineers(c: InMemoryDomainContext):
            c.insert(Employee.hire("E-1", "Jo", "engineering"))
            c.insert(Employee.hire("E-2", "Sam", "engineering"))

        result = await uow.execute(hire_engineers)
        logger.info(f"Committed {len(result.events)} events")

        logger.info("\n--- Hiring a third engineer (over the limit) ---")
        try:
            await uow.execute(lambda c: c.insert(Employee.hire("E-3", "Alex", "engineering")))
        except PreCommitHandlerFailed as e:
            logger.warning(f"Hire refused by {e.handler_type}: {e.cause}")

        logger.info(f"Engineers: {[e.name for e in context.find(Employee, department='engineering')]}")
        logger.info(f"Welcome emails sent: {container.resolve(Mailbox).sent}")
    finally:
        if connection is not None:
            connection.close()

    logger.info("\n=== Sample completed ===")


if __name__ == "__main__":
    asyncio.run(main())
