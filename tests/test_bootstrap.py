"""Contacts API bootstrap: the four service registrations of a small web app."""

import unittest
from typing import Protocol

from scopebind import Container, Lifetime


SMTP_ADDRESS = "smtp.myserver.com"


class Logger(Protocol):
    def log(self, message: str) -> None: ...


class NotificationService(Protocol):
    def notify(self, contact_id: int) -> None: ...


class ContactRepository(Protocol):
    def add(self, name: str) -> int: ...


class EMailSender(Protocol):
    def send(self, to: str, body: str) -> None: ...


class ListLogger:
    def __init__(self):
        self.messages = []

    def log(self, message: str) -> None:
        self.messages.append(message)


class LoggingNotificationService:
    def __init__(self, logger: Logger):
        self.logger = logger

    def notify(self, contact_id: int) -> None:
        self.logger.log(f"contact {contact_id} changed")


class InMemoryContactRepository:
    def __init__(self):
        self.contacts = {}

    def add(self, name: str) -> int:
        contact_id = len(self.contacts) + 1
        self.contacts[contact_id] = name
        return contact_id


class SmtpEMailSender:
    def __init__(self, logger: Logger, smtp_address: str):
        self.logger = logger
        self.smtp_address = smtp_address

    def send(self, to: str, body: str) -> None:
        self.logger.log(f"sending to {to} via {self.smtp_address}")


def build_container() -> Container:
    container = Container()
    container.register(Logger, ListLogger, lifetime=Lifetime.SINGLETON)
    container.register(NotificationService, LoggingNotificationService, lifetime=Lifetime.TRANSIENT)
    container.register(ContactRepository, InMemoryContactRepository, lifetime=Lifetime.SCOPED)
    container.register(
        EMailSender,
        factory=lambda sp: SmtpEMailSender(sp.resolve(Logger), SMTP_ADDRESS),
        lifetime=Lifetime.SINGLETON,
    )
    container.freeze()
    return container


class TestContactsBootstrap(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = build_container()

    def tearDown(self):
        self.cont.close()

    def test_email_sender_is_singleton_with_configured_address(self):
        sender = self.cont.resolve(EMailSender)

        assert self.cont.resolve(EMailSender) is sender
        assert sender.smtp_address == SMTP_ADDRESS

    def test_email_sender_receives_fully_built_logger(self):
        sender = self.cont.resolve(EMailSender)

        assert sender.logger is self.cont.resolve(Logger)
        sender.send("ana@example.com", "hi")
        assert sender.logger.messages == [f"sending to ana@example.com via {SMTP_ADDRESS}"]

    def test_logger_built_before_email_sender_factory_runs(self):
        seen = []
        cont = Container()
        cont.register(Logger, ListLogger)

        def make_sender(sp):
            logger = sp.resolve(Logger)
            seen.append(isinstance(logger, ListLogger))
            return SmtpEMailSender(logger, SMTP_ADDRESS)

        cont.register(EMailSender, factory=make_sender)
        cont.resolve(EMailSender)
        assert seen == [True]

    def test_notification_service_is_transient_sharing_logger(self):
        n1 = self.cont.resolve(NotificationService)
        n2 = self.cont.resolve(NotificationService)

        assert n1 is not n2
        assert n1.logger is n2.logger

    def test_contact_repository_is_per_request(self):
        scope_a = self.cont.begin_scope()
        repo_a = scope_a.resolve(ContactRepository)
        assert scope_a.resolve(ContactRepository) is repo_a

        scope_b = self.cont.begin_scope()
        assert scope_b.resolve(ContactRepository) is not repo_a

        self.cont.end_scope(scope_a.id)
        scope_a2 = self.cont.begin_scope()
        assert scope_a2.resolve(ContactRepository) is not repo_a

    def test_request_handler_uses_scope_for_unit_of_work(self):
        def handle_create(scope, name):
            repo = scope.resolve(ContactRepository)
            contact_id = repo.add(name)
            scope.resolve(NotificationService).notify(contact_id)
            return contact_id

        with self.cont.begin_scope() as request:
            assert handle_create(request, "Ana") == 1
            assert handle_create(request, "Ben") == 2

        with self.cont.begin_scope() as request:
            assert handle_create(request, "Cid") == 1

        assert self.cont.resolve(Logger).messages == [
            "contact 1 changed",
            "contact 2 changed",
            "contact 1 changed",
        ]

    def test_scope_local_override_for_a_single_request(self):
        class RecordingSender:
            def __init__(self):
                self.sent = []

            def send(self, to: str, body: str) -> None:
                self.sent.append((to, body))

        fake_sender = RecordingSender()

        with self.cont.begin_scope() as request:
            request.register_instance(EMailSender, fake_sender)
            request.resolve(EMailSender).send("ana@example.com", "hi")

        assert fake_sender.sent == [("ana@example.com", "hi")]
        assert self.cont.resolve(EMailSender) is not fake_sender
