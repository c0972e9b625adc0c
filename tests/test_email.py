import smtplib
from unittest.mock import MagicMock, patch

import pytest

from app.core.config import Settings
from app.core.exceptions import EmailDeliveryError
from app.services.email import EmailAddress, EmailMessage, EmailService, get_email_service
from helpers import auth_headers

CONTRACT = {
    "recipient_email": "dana@example.com",
    "animal_name": "Rex",
    "species": "Dog",
    "breed": "Labrador",
    "gender": "Male",
    "scars_id": "SC-1042",
}


def smtp_settings(**overrides) -> Settings:
    values = {
        "SMTP_HOST": "smtp.example.com",
        "SMTP_USER": "mailer",
        "SMTP_PASSWORD": "secret",
        "EMAILS_FROM_EMAIL": "rescue@example.com",
        "ADOPTION_CONTRACT_URL": "https://forms.example.com/contract",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def mailer(api):
    """Email service double for the contract endpoints."""
    from app.main import app

    service = MagicMock(spec=EmailService)
    app.dependency_overrides[get_email_service] = lambda: service
    return service


# =============================================================================
# Email Service
# =============================================================================

async def test_send_email_over_starttls():
    service = EmailService(smtp_settings())
    message = EmailMessage(
        to=[EmailAddress(email="dana@example.com", name="Dana Levi")],
        subject="Hello",
        body_text="Welcome home",
    )

    with patch("app.services.email.smtplib.SMTP") as smtp_class:
        await service.send_email(message)

    smtp = smtp_class.return_value
    smtp_class.assert_called_once_with("smtp.example.com", 587, timeout=30)
    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("mailer", "secret")
    sent, = smtp.send_message.call_args.args
    assert sent["To"] == "Dana Levi <dana@example.com>"
    assert sent["From"] == "Rescue App <rescue@example.com>"
    assert sent["Subject"] == "Hello"
    assert smtp.send_message.call_args.kwargs["to_addrs"] == ["dana@example.com"]
    smtp.quit.assert_called_once()


async def test_send_email_without_login():
    service = EmailService(smtp_settings(SMTP_USER=None, SMTP_PASSWORD=None))
    with patch("app.services.email.smtplib.SMTP") as smtp_class:
        await service.send_email(EmailMessage(to=[EmailAddress("a@example.com")], subject="s", body_text="b"))
    smtp_class.return_value.login.assert_not_called()


async def test_unconfigured_service_refuses_to_send():
    service = EmailService(Settings())
    assert not service.is_configured

    with patch("app.services.email.smtplib.SMTP") as smtp_class:
        with pytest.raises(EmailDeliveryError) as exc_info:
            await service.send_email(EmailMessage(to=[EmailAddress("a@example.com")], subject="s", body_text="b"))

    assert exc_info.value.status_code == 503
    assert exc_info.value.message == "Email service is not configured."
    smtp_class.assert_not_called()


async def test_smtp_failure_is_delivery_error():
    service = EmailService(smtp_settings())
    with patch("app.services.email.smtplib.SMTP") as smtp_class:
        smtp_class.return_value.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        with pytest.raises(EmailDeliveryError) as exc_info:
            await service.send_email(EmailMessage(to=[EmailAddress("a@example.com")], subject="s", body_text="b"))

    assert exc_info.value.details["recipient"] == "a@example.com"
    smtp_class.return_value.quit.assert_called_once()


def test_contract_url():
    service = EmailService(smtp_settings())
    url = service.contract_url(
        animal_name="Rex Jr", species="Dog", breed="Labrador", gender="Male", scars_id="SC-1042"
    )
    assert url == (
        "https://forms.example.com/contract?animalName=Rex+Jr&animalSpecies=Dog"
        "&animalBreed=Labrador&animalGender=Male&scarsId=SC-1042"
    )

    assert EmailService(smtp_settings(ADOPTION_CONTRACT_URL=None)).contract_url(
        animal_name="Rex", species="Dog", breed="Lab", gender="Male", scars_id="1"
    ) is None


async def test_send_adoption_contract_renders_template():
    service = EmailService(smtp_settings())
    with patch.object(service, "send_email") as send_email:
        await service.send_adoption_contract(
            recipient_email="dana@example.com",
            animal_name="Rex",
            species="Dog",
            breed="Labrador",
            gender="Male",
            scars_id="SC-1042",
        )

    message, = send_email.call_args.args
    assert message.subject == "Adoption Contract for Rex"
    assert message.to[0].email == "dana@example.com"
    assert "https://forms.example.com/contract?animalName=Rex" in message.body_text
    assert "Reference: SC-1042" in message.body_text
    assert message.body_html is not None


def test_settings_require_sender_with_host():
    with pytest.raises(ValueError):
        Settings(SMTP_HOST="smtp.example.com")


# =============================================================================
# Contract Endpoints
# =============================================================================

def test_send_contract(api, staff, mailer):
    response = api.client.post("/api/v1/send-contract", json=CONTRACT, headers=auth_headers())

    assert response.status_code == 200
    assert response.json() == {"message": "Adoption contract sent to dana@example.com."}
    mailer.send_adoption_contract.assert_awaited_once_with(**CONTRACT)


def test_send_contract_validation(api, staff, mailer):
    response = api.client.post(
        "/api/v1/send-contract", json={**CONTRACT, "scars_id": ""}, headers=auth_headers()
    )
    assert response.status_code == 400
    assert response.json()["error"]["message"].startswith("scars_id: ")
    mailer.send_adoption_contract.assert_not_called()


def test_send_email(api, staff, mailer):
    response = api.client.post(
        "/api/v1/send-email",
        json={"to_email": "dana@example.com", "subject": "Pickup", "body": "See you at noon"},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Email sent successfully."}
    message, = mailer.send_email.call_args.args
    assert message.to[0].email == "dana@example.com"
    assert message.body_text == "See you at noon"


def test_send_email_errors_use_legacy_shape(api, staff, mailer):
    unauthenticated = api.client.post(
        "/api/v1/send-email", json={"to_email": "dana@example.com", "subject": "s", "body": "b"}
    )
    assert unauthenticated.status_code == 401
    assert unauthenticated.json() == {"message": "Invalid or missing token."}

    invalid = api.client.post(
        "/api/v1/send-email", json={"to_email": "nope", "subject": "s", "body": "b"}, headers=auth_headers()
    )
    assert invalid.status_code == 400
    assert set(invalid.json()) == {"message"}
    assert invalid.json()["message"].startswith("to_email: ")


def test_send_email_when_smtp_unconfigured(api, staff):
    from app.main import app

    app.dependency_overrides[get_email_service] = lambda: EmailService(Settings())
    response = api.client.post(
        "/api/v1/send-email",
        json={"to_email": "dana@example.com", "subject": "s", "body": "b"},
        headers=auth_headers(),
    )

    assert response.status_code == 503
    assert response.json() == {"message": "Email service is not configured."}


def test_send_contract_when_smtp_unconfigured(api, staff):
    from app.main import app

    app.dependency_overrides[get_email_service] = lambda: EmailService(Settings())
    response = api.client.post("/api/v1/send-contract", json=CONTRACT, headers=auth_headers())

    assert response.status_code == 503
    assert response.json() == {
        "error": {"code": "ServiceUnavailable", "message": "Email service is not configured."}
    }
