"""Email templates for InternHub notifications.

Every renderer returns ``(html, plain_text)``. User-supplied strings (names,
reviewer feedback, reasons) are escaped before they reach the HTML body.
"""

from datetime import datetime
from html import escape


# ==============================================================================
# Base Template
# ==============================================================================

BASE_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title} - InternHub</title>
</head>
<body style="margin: 0; padding: 0; background-color: #F8FAFC; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;">
  <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="background-color: #F8FAFC;">
    <tr>
      <td align="center" style="padding: 40px 20px;">
        <table role="presentation" width="600" cellpadding="0" cellspacing="0" style="background-color: #FFFFFF; border-radius: 12px; max-width: 600px;">
          <tr>
            <td style="padding: 32px 40px 24px; text-align: center; border-bottom: 1px solid #E5E7EB;">
              <h1 style="margin: 0; font-size: 28px; font-weight: 700; color: #1D4ED8;">InternHub</h1>
            </td>
          </tr>
          <tr>
            <td style="padding: 40px;">
              {content}
            </td>
          </tr>
          <tr>
            <td style="padding: 24px 40px; background-color: #F9FAFB; border-top: 1px solid #E5E7EB; border-radius: 0 0 12px 12px;">
              <p style="margin: 0; font-size: 12px; color: #6B7280; text-align: center;">
                &copy; {year} InternHub. This email was sent automatically, please do not reply.
              </p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>
"""

CONTENT_TEMPLATE = """
<h2 style="margin: 0 0 16px; font-size: 22px; font-weight: 600; color: #111827;">{heading}</h2>
<p style="margin: 0 0 16px; font-size: 16px; color: #374151;">Hi <strong>{user_name}</strong>,</p>
{paragraphs}
{highlight}
"""

PARAGRAPH_TEMPLATE = (
    '<p style="margin: 0 0 16px; font-size: 16px; color: #374151; '
    'line-height: 1.6;">{text}</p>'
)

HIGHLIGHT_TEMPLATE = (
    '<div style="background-color: {background}; border-left: 4px solid {border}; '
    'padding: 12px 16px; border-radius: 0 8px 8px 0; margin: 24px 0;">'
    '<p style="margin: 0; font-size: 15px; color: #1F2937;">{text}</p></div>'
)

SUCCESS_COLORS = {"background": "#F0FDF4", "border": "#16A34A"}
WARNING_COLORS = {"background": "#FEF3C7", "border": "#F59E0B"}
ERROR_COLORS = {"background": "#FEF2F2", "border": "#DC2626"}


def _render(
    title: str,
    user_name: str,
    paragraphs: list[str],
    highlight: str | None = None,
    colors: dict[str, str] = SUCCESS_COLORS,
) -> tuple[str, str]:
    """Assemble HTML and plain-text bodies from already-escaped HTML fragments."""
    year = datetime.now().year
    content = CONTENT_TEMPLATE.format(
        heading=escape(title),
        user_name=escape(user_name),
        paragraphs="\n".join(PARAGRAPH_TEMPLATE.format(text=p) for p in paragraphs),
        highlight=HIGHLIGHT_TEMPLATE.format(text=highlight, **colors) if highlight else "",
    )
    html = BASE_TEMPLATE.format(title=escape(title), content=content, year=year)

    lines = [f"{title} - InternHub", "", f"Hi {user_name},", ""]
    lines.extend(_strip_tags(p) for p in paragraphs)
    if highlight:
        lines.extend(["", _strip_tags(highlight)])
    lines.extend(["", "---", f"© {year} InternHub."])
    return html, "\n".join(lines)


def _strip_tags(fragment: str) -> str:
    for tag in ("<strong>", "</strong>", "<br>"):
        fragment = fragment.replace(tag, "")
    return fragment


# ==============================================================================
# Submissions and Enrollment
# ==============================================================================

OUTCOME_LABELS = {
    "approved": "approved",
    "rejected": "rejected",
    "needs_revision": "returned for revision",
}


def render_submission_reviewed(
    user_name: str,
    task_title: str,
    outcome: str,
    feedback: str | None = None,
    grade: str | None = None,
) -> tuple[str, str]:
    """Render the review result email for a submission."""
    label = OUTCOME_LABELS.get(outcome, outcome)
    paragraphs = [
        f"Your submission for <strong>{escape(task_title)}</strong> was {label}."
    ]
    if grade is not None:
        paragraphs.append(f"Grade: <strong>{escape(grade)}</strong> / 10")
    if outcome != "approved":
        paragraphs.append("You can send a new submission for this task.")

    return _render(
        title="Submission Reviewed",
        user_name=user_name,
        paragraphs=paragraphs,
        highlight=f"Feedback: {escape(feedback)}" if feedback else None,
        colors=SUCCESS_COLORS if outcome == "approved" else WARNING_COLORS,
    )


def render_enrollment_completed(user_name: str, program_title: str) -> tuple[str, str]:
    return _render(
        title="Program Completed",
        user_name=user_name,
        paragraphs=[
            f"Congratulations! You completed every task of "
            f"<strong>{escape(program_title)}</strong>.",
            "Your completion certificate can now be requested from your dashboard.",
        ],
    )


# ==============================================================================
# Payments
# ==============================================================================


def render_payment_completed(
    user_name: str,
    program_title: str,
    amount: str,
    currency: str,
) -> tuple[str, str]:
    return _render(
        title="Payment Received",
        user_name=user_name,
        paragraphs=[
            f"We received your payment for <strong>{escape(program_title)}</strong>.",
            "Your first task is now unlocked.",
        ],
        highlight=f"Amount paid: <strong>{escape(amount)} {escape(currency)}</strong>",
    )


def render_payment_failed(
    user_name: str,
    program_title: str,
    reason: str | None = None,
) -> tuple[str, str]:
    return _render(
        title="Payment Failed",
        user_name=user_name,
        paragraphs=[
            f"Your payment for <strong>{escape(program_title)}</strong> "
            f"could not be completed.",
            "No money was captured. You can try again from your dashboard.",
        ],
        highlight=f"Reason: {escape(reason)}" if reason else None,
        colors=ERROR_COLORS,
    )


def render_payment_refunded(
    user_name: str,
    program_title: str,
    amount: str,
    currency: str,
) -> tuple[str, str]:
    return _render(
        title="Refund Processed",
        user_name=user_name,
        paragraphs=[
            f"A refund for <strong>{escape(program_title)}</strong> was processed.",
            "It can take 5-7 business days to appear on your statement.",
        ],
        highlight=f"Refunded: <strong>{escape(amount)} {escape(currency)}</strong>",
        colors=WARNING_COLORS,
    )


# ==============================================================================
# Certificates
# ==============================================================================


def render_certificate_issued(
    user_name: str,
    program_title: str,
    certificate_number: str,
    verify_url: str,
) -> tuple[str, str]:
    return _render(
        title="Certificate Issued",
        user_name=user_name,
        paragraphs=[
            f"Your certificate for <strong>{escape(program_title)}</strong> is ready.",
            f"Anyone can verify it at {escape(verify_url)}",
        ],
        highlight=f"Certificate number: <strong>{escape(certificate_number)}</strong>",
    )


def render_certificate_revoked(
    user_name: str,
    program_title: str,
    certificate_number: str,
    reason: str | None = None,
) -> tuple[str, str]:
    return _render(
        title="Certificate Revoked",
        user_name=user_name,
        paragraphs=[
            f"Certificate <strong>{escape(certificate_number)}</strong> for "
            f"<strong>{escape(program_title)}</strong> has been revoked "
            f"and no longer passes verification.",
        ],
        highlight=f"Reason: {escape(reason)}" if reason else None,
        colors=ERROR_COLORS,
    )
