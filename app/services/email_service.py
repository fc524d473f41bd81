import asyncio
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, Dict, List
import logging

logger = logging.getLogger(__name__)


def format_amount(amount: int) -> str:
    """Minor units to a display string, 123450 -> '1,234.50'."""
    return f"{amount / 100:,.2f}"


class EmailService:
    """Email service for transactional emails over SMTP."""

    def __init__(
        self,
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "",
        from_name: str = "FoodRescue"
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email or smtp_user
        self.from_name = from_name

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email over SMTP with STARTTLS.

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_content: HTML body of the email
            text_content: Plain text body (optional fallback)

        Returns:
            True if email sent successfully, False otherwise
        """
        if not self.is_configured:
            logger.warning("Email not configured. SMTP credentials missing.")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP Authentication failed. Check email credentials.")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {e}")
            return False
        except OSError as e:
            logger.error(f"Network error sending email: {e}")
            return False

    def send_pickup_confirmation_email(
        self,
        to_email: str,
        order_number: str,
        customer_name: str,
        total_amount: int,
        items: List[Dict],
        pickup_code: str,
        pickup_location: Dict,
        scheduled_pickup_time: Optional[str] = None,
        frontend_url: str = "http://localhost:5173"
    ) -> bool:
        """
        Send the order confirmation with the pickup code the buyer shows at
        handoff.

        items: dicts with product_name, quantity, unit and subtotal (minor units)
        """
        subject = f"Order Confirmation - {order_number}"

        items_html = ""
        for item in items:
            items_html += f"""
            <tr>
                <td style="padding: 10px; border-bottom: 1px solid #ddd;">{item.get('product_name', 'Product')}</td>
                <td style="padding: 10px; border-bottom: 1px solid #ddd; text-align: center;">
                    {item.get('quantity', 1)} {item.get('unit', '')}
                </td>
                <td style="padding: 10px; border-bottom: 1px solid #ddd; text-align: right;">
                    {format_amount(item.get('subtotal', 0))}
                </td>
            </tr>
            """

        address = pickup_location.get('address', '')
        city = pickup_location.get('city', '')
        schedule_html = (
            f"<p><strong>Scheduled pickup:</strong> {scheduled_pickup_time}</p>"
            if scheduled_pickup_time else ""
        )

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
        </head>
        <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto;">
            <div style="background-color: #28a745; color: white; padding: 20px; text-align: center;">
                <h1 style="margin: 0;">Order Confirmed!</h1>
            </div>
            <div style="padding: 30px 20px;">
                <p>Dear {customer_name},</p>
                <p>Thank you for rescuing food! Your order is reserved for pickup.</p>

                <div style="background-color: #f8f9fa; border: 2px solid #28a745; padding: 15px;
                            font-size: 20px; font-weight: bold; text-align: center; margin: 20px 0;">
                    Order Number: {order_number}
                </div>

                <table style="width: 100%; border-collapse: collapse; margin: 20px 0;">
                    <thead>
                        <tr>
                            <th style="padding: 10px; text-align: left;">Item</th>
                            <th style="padding: 10px; text-align: center;">Quantity</th>
                            <th style="padding: 10px; text-align: right;">Amount</th>
                        </tr>
                    </thead>
                    <tbody>
                        {items_html}
                        <tr style="font-weight: bold; background-color: #f8f9fa;">
                            <td colspan="2" style="padding: 10px; text-align: right;">Total:</td>
                            <td style="padding: 10px; text-align: right;">{format_amount(total_amount)}</td>
                        </tr>
                    </tbody>
                </table>

                <div style="background-color: #f8f9fa; padding: 15px; margin: 20px 0; border-radius: 5px;">
                    <h4 style="margin-top: 0;">Pickup Information</h4>
                    <p><strong>Location:</strong> {address}, {city}</p>
                    {schedule_html}
                    <p>Share this code with the store at pickup:</p>
                    <div style="font-size: 28px; font-weight: bold; letter-spacing: 6px; text-align: center;">
                        {pickup_code}
                    </div>
                </div>

                <p>Track your order: <a href="{frontend_url}/orders/{order_number}">{frontend_url}/orders/{order_number}</a></p>
                <p>Best regards,<br>The FoodRescue Team</p>
            </div>
        </body>
        </html>
        """

        item_lines = "\n".join(
            f"- {item.get('product_name', 'Product')} x{item.get('quantity', 1)}: "
            f"{format_amount(item.get('subtotal', 0))}"
            for item in items
        )
        text_content = f"""
Order Confirmed - {order_number}

Dear {customer_name},

Your order is reserved for pickup.

{item_lines}

Total: {format_amount(total_amount)}

Pickup location: {address}, {city}
Pickup code: {pickup_code}

The FoodRescue Team
        """

        return self.send_email(to_email, subject, html_content, text_content)

    def send_payment_success_email(
        self,
        to_email: str,
        order_number: str,
        customer_name: str,
        amount: int,
        payment_reference: str
    ) -> bool:
        subject = f"Payment Confirmed - {order_number}"

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto;">
            <div style="background-color: #28a745; color: white; padding: 20px; text-align: center;">
                <h1 style="margin: 0;">Payment Successful!</h1>
            </div>
            <div style="padding: 30px 20px;">
                <p>Dear {customer_name},</p>
                <p>We received your payment of <strong>{format_amount(amount)}</strong>
                   for order <strong>{order_number}</strong>.</p>
                <p>Reference: {payment_reference}</p>
                <p>The store will let you know when your order is ready for pickup.</p>
                <p>Best regards,<br>The FoodRescue Team</p>
            </div>
        </body>
        </html>
        """

        text_content = f"""
Payment Successful!

Dear {customer_name},

Amount Paid: {format_amount(amount)}
Order Number: {order_number}
Reference: {payment_reference}

The FoodRescue Team
        """

        return self.send_email(to_email, subject, html_content, text_content)


def get_email_service() -> EmailService:
    """Get configured email service instance."""
    from app.config import settings

    return EmailService(
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        from_email=settings.SMTP_FROM_EMAIL,
        from_name=settings.SMTP_FROM_NAME
    )


# ==================== NOTIFICATION HELPERS ====================

async def send_pickup_confirmation(
    order_number: str,
    customer_email: Optional[str],
    customer_name: str,
    total_amount: int,
    items: List[Dict],
    pickup_code: str,
    pickup_location: Dict,
    scheduled_pickup_time: Optional[str] = None,
    email_service: Optional[EmailService] = None,
) -> bool:
    """
    Send the pickup confirmation after an order is committed.

    Runs the blocking SMTP call in a worker thread. Never raises: the order
    already exists, a failed email must not turn into a failed request.
    """
    from app.config import settings

    if not customer_email:
        return False

    service = email_service or get_email_service()
    try:
        return await asyncio.to_thread(
            service.send_pickup_confirmation_email,
            to_email=customer_email,
            order_number=order_number,
            customer_name=customer_name,
            total_amount=total_amount,
            items=items,
            pickup_code=pickup_code,
            pickup_location=pickup_location,
            scheduled_pickup_time=scheduled_pickup_time,
            frontend_url=settings.FRONTEND_URL,
        )
    except Exception as e:
        logger.error(f"Pickup confirmation for {order_number} failed: {e}")
        return False


async def send_payment_notification(
    order_number: str,
    customer_email: Optional[str],
    customer_name: str,
    amount: int,
    payment_reference: str,
    email_service: Optional[EmailService] = None,
) -> bool:
    """Best-effort payment receipt; failures are logged only."""
    if not customer_email:
        return False

    service = email_service or get_email_service()
    try:
        return await asyncio.to_thread(
            service.send_payment_success_email,
            to_email=customer_email,
            order_number=order_number,
            customer_name=customer_name,
            amount=amount,
            payment_reference=payment_reference,
        )
    except Exception as e:
        logger.error(f"Payment notification for {order_number} failed: {e}")
        return False
