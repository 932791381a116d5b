"""
CQRS: Command Handlers

Handles commands by validating them, checking business rules against
the write store and committing through the unit of work. Every handled
command yields exactly one Result.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from core.errors import PersistenceFailure, UniqueConstraintViolation
from core.types import Result
from db.commands import (
    CreateCustomerCommand,
    CreateCustomerCommandValidator,
    CreateCustomerResponse,
)
from db.interfaces import ICustomerWriteOnlyRepository, IUnitOfWork
from domain.factories import CustomerFactory
from domain.mediator import ICommandHandler


logger = logging.getLogger("shop.db.command_handlers")

SUCCESS_MESSAGE = "Successfully registered!"
DUPLICATE_EMAIL_MESSAGE = "The provided e-mail address is already in use."
COMMIT_FAILED_MESSAGE = "Unable to save the customer. Please try again later."


class CreateCustomerCommandHandler(
    ICommandHandler[CreateCustomerCommand, Result[CreateCustomerResponse]]
):
    """
    Registers a customer.

    Received -> Validated -> Checked -> Staged -> Committed, short-circuiting
    to a failure Result at the first rejected step. Validation and the
    duplicate check run before anything is staged.
    """

    def __init__(
        self,
        validator: CreateCustomerCommandValidator,
        repository: ICustomerWriteOnlyRepository,
        unit_of_work: IUnitOfWork,
    ):
        self.validator = validator
        self.repository = repository
        self.unit_of_work = unit_of_work

    async def handle(self, command: CreateCustomerCommand) -> Result[CreateCustomerResponse]:
        errors = self.validator.validate(command)
        if errors:
            return Result.invalid(errors)

        try:
            duplicate = await self.repository.exists_by_email(command.email)
        except (PersistenceFailure, SQLAlchemyError) as e:
            logger.error(f"Uniqueness check failed for command {command.command_id}: {e}")
            return Result.error(COMMIT_FAILED_MESSAGE)
        if duplicate:
            return Result.error(DUPLICATE_EMAIL_MESSAGE)

        customer = CustomerFactory.create(
            command.first_name,
            command.last_name,
            command.gender,
            command.email,
            command.date_of_birth,
        )
        self.repository.add(customer)

        try:
            await self.unit_of_work.save_changes()
        except UniqueConstraintViolation:
            logger.info(f"Duplicate e-mail caught at commit for command {command.command_id}")
            return Result.error(DUPLICATE_EMAIL_MESSAGE)
        except PersistenceFailure as e:
            logger.error(f"Commit failed for command {command.command_id}: {e}")
            return Result.error(COMMIT_FAILED_MESSAGE)

        logger.info(f"Registered customer {customer.id}")
        return Result.success(CreateCustomerResponse(id=customer.id), SUCCESS_MESSAGE)
