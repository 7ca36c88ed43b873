from html import escape
from typing import Dict, Optional, Tuple

import resend

brand_colors = {
    "accent": "#f59e0b",
    "accent_deep": "#f97316",
    "text_primary": "#374151",
    "text_secondary": "#6b7280",
    "text_muted": "#9ca3af",
    "panel": "#f9fafb",
}


class ResendMailer:
    """Notification gateway backed by the Resend API.

    ``send`` reports failures as ``(False, details)`` and never raises, so the
    OTP flow can roll back its record before answering the caller.
    """

    def __init__(self, api_key: str, sender: str, sender_name: str = "Kapee Shop"):
        self.api_key = (api_key or "").strip()
        self.sender = sender
        self.sender_name = sender_name

    def send(
        self, to: str, subject: str, html_body: str, text_body: Optional[str] = None
    ) -> Tuple[bool, Optional[str]]:
        payload: Dict[str, object] = {
            "from": f"{self.sender_name} <{self.sender}>",
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        if text_body:
            payload["text"] = text_body
        return send_email_via_resend(payload, self.api_key)


def send_email_via_resend(payload: Dict[str, object], api_key: str):
    configured_api_key = (api_key or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def build_otp_email_html(
    otp: str, recipient_name: str, recipient_email: str, expiration_minutes: int
) -> str:
    colors = brand_colors
    greeting = recipient_name or recipient_email
    return f"""<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px;">
  <div style="text-align:center;margin-bottom:30px;">
    <h1 style="color:{colors['accent']};font-size:28px;margin:0;">Kapee Shop</h1>
    <p style="color:{colors['text_secondary']};margin:5px 0;">Security Verification</p>
  </div>
  <div style="background:linear-gradient(135deg,{colors['accent']},{colors['accent_deep']});padding:30px;border-radius:10px;color:white;text-align:center;margin-bottom:30px;">
    <h2 style="margin:0 0 15px 0;font-size:24px;">Hello, {greeting}!</h2>
    <p style="margin:0 0 20px 0;font-size:16px;">Your verification code is:</p>
    <div style="background:rgba(255,255,255,0.2);padding:20px;border-radius:8px;margin:20px 0;">
      <span style="font-size:36px;letter-spacing:8px;font-weight:bold;">{otp}</span>
    </div>
    <p style="margin:0;font-size:14px;">This code expires in {expiration_minutes} minutes</p>
  </div>
  <div style="background:{colors['panel']};padding:25px;border-radius:8px;border-left:4px solid {colors['accent']};">
    <ul style="color:{colors['text_secondary']};margin:0;padding-left:20px;line-height:1.8;">
      <li>Do not share this code with anyone.</li>
      <li>If you didn't request this code, you can safely ignore this email.</li>
      <li>Account: {recipient_email}</li>
    </ul>
  </div>
  <p style="text-align:center;color:{colors['text_muted']};font-size:12px;margin-top:20px;">
    Regards,<br />The Kapee Shop Team
  </p>
</div>"""


def build_otp_email_text(otp: str, expiration_minutes: int) -> str:
    return (
        f"Your Kapee Shop verification code is {otp}. "
        f"Enter it within {expiration_minutes} minutes to confirm your email."
    )


def build_contact_notification_html(contact: Dict[str, object]) -> str:
    received_at = contact.get("created_at")
    received = received_at.strftime("%Y-%m-%d %H:%M UTC") if received_at else ""
    return f"""<h3>New Contact Message</h3>
<p><strong>Name:</strong> {escape(str(contact.get("name", "")))}</p>
<p><strong>Email:</strong> {escape(str(contact.get("email", "")))}</p>
<p><strong>Phone:</strong> {escape(str(contact.get("phone") or "N/A"))}</p>
<p><strong>Message:</strong></p>
<p>{escape(str(contact.get("message", "")))}</p>
<p><strong>Received:</strong> {received}</p>"""


def build_contact_reply_html(contact: Dict[str, object], support_email: str = "") -> str:
    colors = brand_colors
    name = escape(str(contact.get("name", "")))
    return f"""<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px;">
  <div style="text-align:center;margin-bottom:30px;">
    <h1 style="color:{colors['accent']};font-size:28px;margin:0;">Kapee Shop</h1>
    <p style="color:{colors['text_secondary']};margin:5px 0;">Premium E-commerce Experience</p>
  </div>
  <div style="background:linear-gradient(135deg,{colors['accent']},{colors['accent_deep']});padding:30px;border-radius:10px;color:white;text-align:center;margin-bottom:30px;">
    <h2 style="margin:0 0 15px 0;font-size:24px;">Thank You, {name}!</h2>
    <p style="margin:0;font-size:16px;">We've received your message and appreciate you reaching out to us.</p>
  </div>
  <div style="background:{colors['panel']};padding:25px;border-radius:8px;border-left:4px solid {colors['accent']};margin-bottom:25px;">
    <h3 style="color:{colors['text_primary']};margin:0 0 15px 0;font-size:18px;">Your Message Summary:</h3>
    <p style="margin:5px 0;color:{colors['text_secondary']};"><strong>Name:</strong> {name}</p>
    <p style="margin:5px 0;color:{colors['text_secondary']};"><strong>Email:</strong> {escape(str(contact.get("email", "")))}</p>
    <p style="margin:5px 0;color:{colors['text_secondary']};"><strong>Phone:</strong> {escape(str(contact.get("phone") or "Not provided"))}</p>
    <div style="background:white;padding:15px;border-radius:5px;color:{colors['text_primary']};line-height:1.6;">
      {escape(str(contact.get("message", "")))}
    </div>
  </div>
  <p style="text-align:center;color:{colors['text_muted']};font-size:14px;">
    Our support team will review your message within 24 hours.
    Need immediate assistance? Contact us at {escape(support_email or "support@kapeeshop.com")}.
  </p>
</div>"""


def build_contact_reply_text(name: str) -> str:
    return (
        f"Thank you, {name}! We've received your message and will reply by email "
        "within 24 hours."
    )
