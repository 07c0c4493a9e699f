"""
Email and SMS content for deal expiration notices.

Plain HTML built from f-strings. Every value that comes from the database
is escaped before it is interpolated.
"""

from collections.abc import Sequence
from datetime import datetime
from html import escape

from dealwatch.features.deal_expiration.domain import Deal

DESCRIPTION_EXCERPT_LENGTH = 120

THEME = {
    "primary": "#0047AB",
    "link": "#3498db",
    "link_dark": "#2980b9",
    "heading": "#2c3e50",
    "text": "#333333",
    "muted": "#666666",
    "border": "#eaeaea",
    "panel": "#f8f9fa",
    "tag_category": "#3498db",
    "tag_distributor": "#2ecc71",
    "badge": "#ff9800",
}

# (background, border, strong text) per time remaining
_URGENCY_COLORS = {
    "1 hour": ("#ffebee", "#f44336", "#d32f2f"),
    "1 day": ("#fff3e0", "#ff9800", "#ef6c00"),
}
_DEFAULT_URGENCY = ("#e8f5e9", "#4caf50", "#2e7d32")


def _format_date(moment: datetime) -> str:
    return f"{moment.month}/{moment.day}/{moment.year}"


def _format_money(amount: float) -> str:
    return f"${amount:,.2f}"


def email_subject(time_remaining: str, deal_count: int) -> str:
    noun = "Deals" if deal_count > 1 else "Deal"
    return f"{noun} Ending in {time_remaining}"


def base_template(content: str, title: str = "Deal Notification") -> str:
    """Shared document shell."""
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: {THEME['text']}; max-width: 600px; margin: 0 auto; padding: 0; background-color: #f4f4f4;">
  <div style="background-color: #ffffff; border-radius: 8px; overflow: hidden; margin: 20px auto;">
    <div style="background-color: {THEME['primary']}; padding: 20px; text-align: center; color: #ffffff;">
      <p style="margin: 10px 0 0; font-size: 22px; font-weight: bold;">New Mexico Grocers Association</p>
    </div>
    <div style="padding: 30px 20px;">
      {content}
    </div>
    <div style="padding: 15px 20px; font-size: 12px; color: {THEME['muted']}; text-align: center; border-top: 1px solid {THEME['border']};">
      You're receiving this because you are a member of the co-op.
    </div>
  </div>
</body>
</html>"""


def _commitments_table(deal: Deal) -> str:
    by_size = deal.commitments_by_size()
    if not by_size:
        return '<p style="margin: 0; color: #777; font-style: italic;">No commitments yet - Be the first!</p>'

    rows = "".join(
        f"""
        <tr>
          <td style="padding: 8px; border: 1px solid {THEME['border']};">{escape(size)}</td>
          <td style="padding: 8px; border: 1px solid {THEME['border']};">{quantity} units</td>
          <td style="padding: 8px; border: 1px solid {THEME['border']};">{_format_money(price)}</td>
        </tr>"""
        for size, (quantity, price) in by_size.items()
    )
    return f"""
      <table width="100%" cellspacing="0" cellpadding="0" border="0" style="font-size: 13px; border-collapse: collapse;">
        <tr style="background-color: #f5f7f8; text-align: left;">
          <th style="padding: 8px; border: 1px solid {THEME['border']};">Size</th>
          <th style="padding: 8px; border: 1px solid {THEME['border']};">Committed Qty</th>
          <th style="padding: 8px; border: 1px solid {THEME['border']};">Price</th>
        </tr>{rows}
        <tr style="background-color: #f9f9f9; font-weight: bold;">
          <td style="padding: 8px; border: 1px solid {THEME['border']};">Total</td>
          <td style="padding: 8px; border: 1px solid {THEME['border']};" colspan="2">{deal.total_committed_quantity()} units</td>
        </tr>
      </table>"""


def _deal_card(deal: Deal, time_remaining: str, frontend_url: str) -> str:
    image_url = next((image for image in deal.images if image), f"{frontend_url}/RTNLOGO.jpg")
    deal_url = f"{frontend_url}/deals-catlog/deals/{escape(deal.id)}"

    tags = ""
    if deal.category:
        tags += (
            f'<span style="display: inline-block; margin: 0 8px 8px 0; background: {THEME["tag_category"]}; '
            f'color: white; padding: 5px 10px; border-radius: 4px; font-size: 13px; font-weight: bold;">'
            f"{escape(deal.category)}</span>"
        )
    if deal.distributor_name:
        tags += (
            f'<span style="display: inline-block; margin-bottom: 8px; background: {THEME["tag_distributor"]}; '
            f'color: white; padding: 5px 10px; border-radius: 4px; font-size: 13px; font-weight: bold;">'
            f"{escape(deal.distributor_name)}</span>"
        )

    description = ""
    if deal.description:
        excerpt = deal.description[:DESCRIPTION_EXCERPT_LENGTH]
        ellipsis = "..." if len(deal.description) > DESCRIPTION_EXCERPT_LENGTH else ""
        description = (
            f'<p style="color: #555; margin-bottom: 15px; font-size: 15px;">{escape(excerpt)}{ellipsis}</p>'
        )

    sizes = ""
    if deal.sizes:
        chips = "".join(
            f'<span style="display: inline-block; background: white; border: 1px solid #ddd; padding: 6px 10px; '
            f'margin: 0 6px 6px 0; border-radius: 4px; font-size: 13px;">'
            f"<strong>{escape(size.size)}</strong>: {_format_money(size.discount_price)}</span>"
            for size in deal.sizes
        )
        sizes = f"""
          <div style="margin: 15px 0 20px; background: {THEME['panel']}; border-radius: 4px; padding: 12px;">
            <p style="margin: 0 0 8px 0; font-size: 13px; color: {THEME['muted']}; font-weight: bold;">Available Sizes:</p>
            {chips}
          </div>"""

    facts = [
        ("End Date", _format_date(deal.ends_at)),
        ("Min Quantity", f"{deal.min_qty_for_discount or 0} units"),
        ("Committed", f"{deal.total_committed_quantity()} units"),
    ]
    fact_cells = "".join(
        f"""
              <td width="33%" style="vertical-align: top; padding-right: 10px;">
                <div style="background: {THEME['panel']}; border-radius: 4px; padding: 10px;">
                  <p style="margin: 0 0 5px 0; font-size: 12px; color: {THEME['muted']}; text-transform: uppercase;">{label}</p>
                  <p style="margin: 0; font-weight: bold; color: {THEME['heading']}; font-size: 15px;">{value}</p>
                </div>
              </td>"""
        for label, value in facts
    )

    return f"""
      <table width="100%" cellspacing="0" cellpadding="0" border="0" style="margin-bottom: 30px; border-collapse: collapse;">
        <tr>
          <td colspan="2" style="background-color: #f5f7f8; padding: 12px 15px; border-bottom: 1px solid {THEME['border']};">
            <h3 style="margin: 0; color: {THEME['heading']}; font-size: 18px; display: inline-block;">{escape(deal.name)}</h3>
            <span style="float: right; padding: 5px 10px; border-radius: 20px; font-size: 12px; font-weight: bold; background: {THEME['badge']}; color: white;">ENDS IN {escape(time_remaining.upper())}</span>
          </td>
        </tr>
        <tr>
          <td width="30%" valign="top" style="padding: 15px;">
            <img src="{escape(image_url)}" alt="{escape(deal.name)}" style="width: 100%; object-fit: cover; max-height: 250px; display: block; border-radius: 6px;">
          </td>
          <td width="70%" valign="top" style="padding: 15px;">
            <div style="margin-bottom: 15px;">{tags}</div>
            {description}
            <table width="100%" cellspacing="0" cellpadding="0" border="0" style="margin-bottom: 20px;">
              <tr>{fact_cells}
              </tr>
            </table>
            {sizes}
            <a href="{deal_url}" style="display: inline-block; background-color: {THEME['link']}; color: white; text-decoration: none; padding: 10px 20px; border-radius: 4px; font-size: 14px; font-weight: bold;">Make Commitment</a>
          </td>
        </tr>
        <tr>
          <td colspan="2" style="padding: 0 15px 15px;">
            <p style="margin: 10px 0; font-size: 14px; font-weight: bold; color: #555;">Commitments By Size:</p>
            {_commitments_table(deal)}
          </td>
        </tr>
      </table>"""


def batch_expiration_email(
    member_name: str,
    deals: Sequence[Deal],
    time_remaining: str,
    frontend_url: str,
    additional_count: int = 0,
) -> str:
    """
    Render the batch notice for one member.

    Args:
        member_name: Greeting name
        deals: Deals shown in the body (already capped by the caller)
        time_remaining: Bucket label, e.g. "3 days"
        frontend_url: Base URL of the member dashboard
        additional_count: Pending deals left out of the body
    """
    frontend_url = frontend_url.rstrip("/")
    background, border, strong = _URGENCY_COLORS.get(time_remaining, _DEFAULT_URGENCY)

    divider = '<hr style="border: 0; height: 2px; background: #eee; margin: 35px 0;">'
    cards = divider.join(_deal_card(deal, time_remaining, frontend_url) for deal in deals)

    more = ""
    if additional_count > 0:
        plural = "s" if additional_count > 1 else ""
        more = f"""
      <p style="margin: 20px 0; font-size: 16px; font-weight: bold; color: {THEME['heading']};">
        And {additional_count} more deal{plural} ending in {escape(time_remaining)}.
        <a href="{frontend_url}/deals-catlog" style="color: {THEME['link_dark']};">See them all</a>.
      </p>"""

    content = f"""
      <h2 style="color: {THEME['heading']}; border-bottom: 2px solid {THEME['link']}; padding-bottom: 10px;">Deals Ending Soon!</h2>
      <p style="font-size: 16px;">Dear {escape(member_name)},</p>
      <div style="background-color: {background}; border-left: 5px solid {border}; padding: 15px; margin: 20px 0; border-radius: 4px;">
        <p style="margin: 0; font-size: 16px;">
          <strong style="color: {strong};">Time-Sensitive Notice:</strong>
          The following deals are ending in {escape(time_remaining)}!
        </p>
      </div>
      <div style="margin: 30px 0;">{cards}
      </div>{more}
      <p style="margin: 25px 0 15px; font-size: 16px;">Don't miss out on these opportunities! Review these deals and make your commitments before they expire.</p>
      <div style="text-align: center; margin: 30px 0;">
        <a href="{frontend_url}/deals-catlog" style="display: inline-block; background-color: {THEME['link_dark']}; color: white; text-decoration: none; padding: 12px 25px; border-radius: 4px; font-size: 16px; font-weight: bold;">View All Deals</a>
      </div>
      <p style="font-size: 14px; color: {THEME['muted']}; border-top: 1px solid #eee; padding-top: 20px; margin-top: 30px;">
        <strong>Note:</strong> Once deals expire, they will no longer be available for new commitments.
      </p>"""

    return base_template(content, title=email_subject(time_remaining, len(deals) + additional_count))


def deal_expiration_sms(title: str, time_remaining: str, expiry_date: datetime) -> str:
    return f'Deal Alert: "{title}" is expiring in {time_remaining}. Expires on {_format_date(expiry_date)}.'


def overflow_summary_sms(remaining: int, time_remaining: str) -> str:
    plural = "s" if remaining > 1 else ""
    return f"And {remaining} more deal{plural} ending in {time_remaining}. Check your email for details."
