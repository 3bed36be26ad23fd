"""Transactional email delivery over SMTP."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr

from core.config import Settings
from services.email_templates import render_email
from services.side_effects import SideEffectResult

logger = logging.getLogger(__name__)

DEFAULT_RECIPIENT_NAME = "Cliente"


@dataclass(frozen=True)
class SmtpConfig:
    """SMTP connection settings."""

    host: str
    port: int = 587
    username: str = ""
    password: str = ""
    sender: str = ""
    sender_name: str = "Suns Fidelity Card"
    use_tls: bool = True
    timeout: float = 30.0
    dry_run: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpConfig":
        """Build SMTP settings from application settings."""
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.smtp_sender or settings.smtp_username,
            sender_name=settings.smtp_sender_name,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout_seconds,
            dry_run=settings.is_email_dry_run,
        )


class EmailService:
    """
    Sends verification, profile access and welcome emails.

    Sending is best-effort: every public method returns a SideEffectResult
    and never raises. In dry-run mode messages are built and logged but not
    delivered.
    """

    def __init__(self, config: SmtpConfig, link_expiry_minutes: int = 15) -> None:
        self._config = config
        self._link_expiry_minutes = link_expiry_minutes

    @property
    def brand(self) -> str:
        """Name shown as sender and in email bodies."""
        return self._config.sender_name

    async def send_verification(
        self, email: str, link: str, name: str | None = None,
    ) -> SideEffectResult:
        """Send the link to complete a new registration."""
        return await self._send(
            "verification",
            email,
            name,
            subject=f"Completa la tua registrazione - {self.brand}",
            link=link,
            expires_minutes=self._link_expiry_minutes,
        )

    async def send_profile_access(
        self, email: str, link: str, name: str | None = None,
    ) -> SideEffectResult:
        """Send the link giving a known member access to their profile."""
        return await self._send(
            "profile_access",
            email,
            name,
            subject=f"Accesso alla tua area personale - {self.brand}",
            link=link,
            expires_minutes=self._link_expiry_minutes,
        )

    async def send_welcome(
        self,
        email: str,
        identity_code: str,
        name: str | None = None,
        card_png: bytes | None = None,
    ) -> SideEffectResult:
        """Send the welcome email, with the digital card attached when available."""
        attachment = None
        if card_png:
            attachment = (f"SunsFidelityCard_{identity_code}.png", card_png)
        greeting = name or DEFAULT_RECIPIENT_NAME
        return await self._send(
            "welcome",
            email,
            name,
            subject=f"Benvenuto in {self.brand}, {greeting} - La tua Fidelity Card è attiva",
            attachment=attachment,
            identity_code=identity_code,
            has_card=attachment is not None,
        )

    async def _send(
        self,
        template: str,
        email: str,
        name: str | None,
        subject: str,
        attachment: tuple[str, bytes] | None = None,
        **context: object,
    ) -> SideEffectResult:
        effect = f"email:{template}"
        recipient_name = name or DEFAULT_RECIPIENT_NAME
        try:
            html, text = render_email(
                template, name=recipient_name, brand=self.brand, subject=subject, **context,
            )
            message = self._build_message(email, recipient_name, subject, html, text, attachment)
        except Exception as e:
            logger.exception("Failed to build %s email for %s", template, email)
            return SideEffectResult.failed(effect, f"{type(e).__name__}: {e}")

        if self._config.dry_run:
            logger.info("[DRY_RUN] %s email to %s: %s", template, email, subject)
            return SideEffectResult.ok(effect)

        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            # OSError covers socket timeouts, refused connections and TLS errors
            logger.warning("Failed to send %s email to %s: %s", template, email, e)
            return SideEffectResult.failed(effect, f"{type(e).__name__}: {e}")

        logger.info("Sent %s email to %s", template, email)
        return SideEffectResult.ok(effect)

    def _build_message(
        self,
        email: str,
        recipient_name: str,
        subject: str,
        html: str,
        text: str,
        attachment: tuple[str, bytes] | None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self._config.sender_name, self._config.sender))
        message["To"] = formataddr((recipient_name, email))
        message["Subject"] = subject
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        if attachment is not None:
            filename, data = attachment
            message.add_attachment(data, maintype="image", subtype="png", filename=filename)
        return message

    def _deliver(self, message: EmailMessage) -> None:
        config = self._config
        with smtplib.SMTP(config.host, config.port, timeout=config.timeout) as server:
            if config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if config.username:
                server.login(config.username, config.password)
            server.send_message(message)
