"""
Notification providers
Email through Resend, SMS through the Twilio REST API
"""

import logging
from typing import Optional

import httpx
import resend

from ...config import (
    EMAIL_FROM_ADDRESS,
    RESEND_API_KEY,
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
    TWILIO_PHONE_NUMBER,
)
from ...errors import NotificationError

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"


class EmailProvider:
    channel = "email"

    def __init__(self, api_key: Optional[str] = RESEND_API_KEY, from_address: str = EMAIL_FROM_ADDRESS):
        self.api_key = api_key
        self.from_address = from_address
        if not self.api_key:
            logger.warning("⚠️ RESEND_API_KEY not set - email sends will fail")

    async def send(self, to: str, subject: str, body: str) -> str:
        """Send a plain-text email; returns the provider message id"""
        if not self.api_key:
            raise NotificationError("Email service not configured", channel=self.channel)

        resend.api_key = self.api_key
        email_data = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "text": body,
        }
        try:
            logger.info(f"📧 Sending email via Resend to: {to}")
            response = resend.Emails.send(email_data)
        except Exception as e:
            logger.error(f"❌ Email send error to {to}: {e}")
            raise NotificationError(f"Failed to send email: {e}", channel=self.channel) from e

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info(f"✅ Email sent successfully via Resend: {message_id}")
        return message_id or ""


class SmsProvider:
    channel = "sms"

    def __init__(
        self,
        account_sid: Optional[str] = TWILIO_ACCOUNT_SID,
        auth_token: Optional[str] = TWILIO_AUTH_TOKEN,
        from_number: Optional[str] = TWILIO_PHONE_NUMBER,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.transport = transport
        if not (self.account_sid and self.auth_token and self.from_number):
            logger.warning("⚠️ Twilio credentials not set - SMS sends will fail")

    async def send(self, to: str, subject: str, body: str) -> str:
        """Send an SMS to an E.164 number; subject is ignored"""
        if not (self.account_sid and self.auth_token and self.from_number):
            raise NotificationError("SMS service not configured", channel=self.channel)

        data = {"To": to, "From": self.from_number, "Body": body}
        try:
            logger.info(f"🚀 Sending SMS to Twilio API for {to}")
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{TWILIO_API_URL}/Accounts/{self.account_sid}/Messages.json",
                    auth=(self.account_sid, self.auth_token),
                    data=data,
                    timeout=10.0,
                )
        except httpx.HTTPError as e:
            logger.error(f"Twilio API error: {str(e)}")
            raise NotificationError(f"Failed to send SMS: {e}", channel=self.channel) from e

        logger.info(f"📡 Twilio API response status: {response.status_code}")

        if response.status_code in [200, 201]:
            message_sid = response.json().get("sid")
            logger.info(f"✅ SMS sent successfully to {to} (SID: {message_sid})")
            return message_sid or ""

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        error_message = error_data.get("message", "Unknown error")
        error_code = error_data.get("code")
        logger.error(f"❌ Twilio API error [{error_code}]: {error_message}")
        raise NotificationError(
            f"[{error_code}] {error_message}" if error_code else error_message,
            channel=self.channel,
            status_code=response.status_code,
        )
