from unittest.mock import MagicMock

from django.test import SimpleTestCase

from terminal.services.backend_client import BackendError
from terminal.services.payloads import LoginResult
from terminal.services.session import NoUnitAssignedError, open_session, resolve_unit_id
from terminal.tests.fakes import make_session, make_user


class ResolveUnitTests(SimpleTestCase):
    def test_requested_unit_wins(self):
        self.assertEqual(resolve_unit_id(user=make_user(), requested_unit_id=" 9 "), "9")

    def test_falls_back_to_assigned_unit(self):
        self.assertEqual(resolve_unit_id(user=make_user(), requested_unit_id=""), "7")

    def test_operator_without_unit_cannot_sell(self):
        with self.assertRaises(NoUnitAssignedError):
            resolve_unit_id(user=make_user(assigned_unit_id=None))


class OpenSessionTests(SimpleTestCase):
    def setUp(self):
        self.anonymous = MagicMock()
        self.bound = MagicMock()
        self.anonymous.with_session.return_value = self.bound

    def test_login_binds_client_to_session(self):
        self.anonymous.login.return_value = LoginResult(access_token="tok", user=make_user())

        session, client = open_session(email="cashier@example.com", password="pw", client=self.anonymous)

        self.assertEqual(session.access_token, "tok")
        self.assertEqual(session.unit_id, "7")
        self.assertEqual(session.operator_name, "Ada Cashier")
        self.assertIs(client, self.bound)
        self.anonymous.with_session.assert_called_once_with(session)

    def test_no_unit_is_refused_after_login(self):
        self.anonymous.login.return_value = LoginResult(
            access_token="tok", user=make_user(assigned_unit_id=None)
        )

        with self.assertRaises(NoUnitAssignedError):
            open_session(email="cashier@example.com", password="pw", client=self.anonymous)
        self.anonymous.with_session.assert_not_called()

    def test_login_rejection_propagates(self):
        self.anonymous.login.side_effect = BackendError("Invalid credentials", status_code=401)

        with self.assertRaises(BackendError):
            open_session(email="cashier@example.com", password="bad", client=self.anonymous)

    def test_operator_name_falls_back_to_email(self):
        session = make_session(user=make_user(name=""))
        self.assertEqual(session.operator_name, "cashier@example.com")
