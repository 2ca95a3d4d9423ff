import base64
from email import message_from_bytes
from email.message import Message
import unittest
from unittest.mock import patch

from suprimentos.contexts.sourcing.infrastructure.email_transport import (
    EmailTransportError,
    GmailApiTransport,
    MockEmailTransport,
)
from suprimentos.http_client import HttpClientError


REQUEST_JSON = "suprimentos.contexts.sourcing.infrastructure.email_transport.request_json"


def _decode(raw: str) -> Message:
    padded = raw + "=" * (-len(raw) % 4)
    return message_from_bytes(base64.urlsafe_b64decode(padded))


class MockEmailTransportTest(unittest.TestCase):
    def test_messages_land_in_outbox(self) -> None:
        transport = MockEmailTransport()
        result = transport.send_email("vendas@moinhosul.com.br", "Cotacao", "Corpo")

        self.assertTrue(result.message_id.startswith("mock-"))
        self.assertEqual(len(transport.outbox), 1)
        self.assertEqual(transport.outbox[0].to, "vendas@moinhosul.com.br")

    def test_disconnected_transport_refuses_to_send(self) -> None:
        transport = MockEmailTransport(connected=False)
        with self.assertRaises(EmailTransportError) as ctx:
            transport.send_email("vendas@moinhosul.com.br", "Cotacao", "Corpo")
        self.assertTrue(ctx.exception.not_connected)
        self.assertFalse(transport.validate_token())

        transport.connect("token")
        self.assertTrue(transport.is_connected())

    def test_blank_recipient_is_rejected(self) -> None:
        with self.assertRaises(EmailTransportError) as ctx:
            MockEmailTransport().send_email("  ", "Cotacao", "Corpo")
        self.assertFalse(ctx.exception.not_connected)


class GmailApiTransportTest(unittest.TestCase):
    def setUp(self) -> None:
        self.transport = GmailApiTransport("https://gmail.example/gmail/v1/", access_token="tok-1", sender="compras@padoca.com.br")

    def test_raw_message_is_base64url_mime(self) -> None:
        raw = GmailApiTransport.build_raw_message("vendas@moinhosul.com.br", "Solicitacao de Cotacao", "• Farinha: 25 kg")

        self.assertNotIn("=", raw)
        message = _decode(raw)
        self.assertEqual(message["To"], "vendas@moinhosul.com.br")
        self.assertEqual(message["Subject"], "Solicitacao de Cotacao")
        self.assertIsNone(message["From"])
        self.assertIn("Farinha: 25 kg", message.get_payload(decode=True).decode("utf-8"))

    def test_send_posts_raw_message_with_bearer_token(self) -> None:
        with patch(REQUEST_JSON, return_value={"id": "msg-1", "threadId": "thr-1"}) as request_json:
            result = self.transport.send_email("vendas@moinhosul.com.br", "Cotacao", "Corpo")

        self.assertEqual((result.message_id, result.thread_id), ("msg-1", "thr-1"))
        method, url = request_json.call_args.args
        kwargs = request_json.call_args.kwargs
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://gmail.example/gmail/v1/users/me/messages/send")
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer tok-1"})
        self.assertEqual(kwargs["retry_attempts"], 0)
        self.assertEqual(_decode(kwargs["payload"]["raw"])["From"], "compras@padoca.com.br")

    def test_unauthorized_response_means_not_connected(self) -> None:
        with patch(REQUEST_JSON, side_effect=HttpClientError("gmail HTTP 401: invalid", status_code=401)):
            with self.assertRaises(EmailTransportError) as ctx:
                self.transport.send_email("vendas@moinhosul.com.br", "Cotacao", "Corpo")
        self.assertTrue(ctx.exception.not_connected)

    def test_server_error_is_a_plain_transport_failure(self) -> None:
        with patch(REQUEST_JSON, side_effect=HttpClientError("gmail HTTP 500", status_code=500)):
            with self.assertRaises(EmailTransportError) as ctx:
                self.transport.send_email("vendas@moinhosul.com.br", "Cotacao", "Corpo")
        self.assertFalse(ctx.exception.not_connected)

    def test_missing_token_fails_before_any_request(self) -> None:
        self.transport.disconnect()
        with patch(REQUEST_JSON) as request_json:
            with self.assertRaises(EmailTransportError) as ctx:
                self.transport.send_email("vendas@moinhosul.com.br", "Cotacao", "Corpo")
        self.assertTrue(ctx.exception.not_connected)
        request_json.assert_not_called()

    def test_validate_token_checks_profile(self) -> None:
        with patch(REQUEST_JSON, return_value={"emailAddress": "compras@padoca.com.br"}):
            self.assertTrue(self.transport.validate_token())
        with patch(REQUEST_JSON, side_effect=HttpClientError("gmail HTTP 401", status_code=401)):
            with self.assertLogs("suprimentos.sourcing.email", level="WARNING"):
                self.assertFalse(self.transport.validate_token())


if __name__ == "__main__":
    unittest.main()
