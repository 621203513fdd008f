"""
Email service for order confirmations and status updates.
Uses Flask-Mail for SMTP integration.

Sending is best-effort: a failed e-mail is logged and never fails the order
operation that triggered it.
"""
import logging
from flask import current_app
from flask_mail import Mail, Message
from order_hub.utils.formatters import money

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """Check if mail is properly configured and enabled."""
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _sender():
    cfg = current_app.config
    return (cfg.get('MAIL_FROM_NAME', 'Wholesale Order Hub'), cfg.get('MAIL_DEFAULT_SENDER'))


def send_order_confirmation(to_email: str, batch_order_number: str, orders: list) -> bool:
    """
    Send the order confirmation for a freshly submitted batch.

    Args:
        to_email: Buyer e-mail
        batch_order_number: Batch identifier
        orders: Order rows of the batch

    Returns:
        True if sent (or mail disabled), False on failure
    """
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Order confirmation skipped for {to_email} ({batch_order_number})")
            return True

        total = sum((o.amount for o in orders), 0)
        items = "\n".join(
            f"- {o.product_name} x {o.quantity} ({o.pricing_mode}) - {money(o.amount)}"
            for o in orders
        )
        rows = "".join(
            f"<tr><td>{o.product_name}</td><td>{o.quantity}</td><td>{money(o.amount)}</td></tr>"
            for o in orders
        )

        text_body = f"""Thank you for your order! It has been received and is being processed.

Batch Number: {batch_order_number}
Number of Items: {len(orders)}
Total Amount: {money(total)}
Status: Pending

Items Ordered:
{items}

You will receive an email notification when your order status changes.
"""
        html_body = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h2 style="color: #1e40af;">Order Confirmation</h2>
          <p>Thank you for your order! Your order has been received and is being processed.</p>
          <p><strong>Batch Number:</strong> {batch_order_number}<br>
             <strong>Number of Items:</strong> {len(orders)}<br>
             <strong>Total Amount:</strong> {money(total)}<br>
             <strong>Status:</strong> Pending</p>
          <table cellpadding="4">
            <tr><th align="left">Product</th><th>Qty</th><th>Amount</th></tr>
            {rows}
          </table>
        </div>
        """

        msg = Message(
            subject=f"Order Confirmation - {batch_order_number}",
            sender=_sender(),
            recipients=[to_email],
            body=text_body,
            html=html_body,
        )
        mail.send(msg)
        logger.info(f"[EMAIL] Order confirmation sent to {to_email} ({batch_order_number})")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] Error sending order confirmation to {to_email}: {e}")
        return False


def send_status_update_email(to_email: str, batch_order_number: str, new_status: str, notes: str = None) -> bool:
    """Notify the buyer that their batch changed status."""
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Status update skipped for {to_email} ({batch_order_number})")
            return True

        status_label = new_status.replace('_', ' ').title()
        notes_text = f"\nNotes: {notes}\n" if notes else ""

        msg = Message(
            subject=f"Order {batch_order_number} - {status_label}",
            sender=_sender(),
            recipients=[to_email],
            body=(
                f"Your order {batch_order_number} is now: {status_label}.\n"
                f"{notes_text}\n"
                "This is an automated message from Wholesale Order Hub."
            ),
        )
        mail.send(msg)
        logger.info(f"[EMAIL] Status update ({new_status}) sent to {to_email}")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] Error sending status update to {to_email}: {e}")
        return False
