"""Default SMS templates with {{variable}} placeholders."""

import re

DEFAULT_TEMPLATES: dict[str, str] = {
    "missed_call": (
        "Hey, this is {{ownerName}} from {{businessName}}. Sorry I missed your call - "
        "I'm on a job site right now. What can I help you with? Reply STOP to opt out."
    ),
    "payment_confirmation": (
        "Payment of {{amount}} received! Thank you for your business. - {{businessName}}"
    ),
    "payment_owner_notice": "Payment received: {{amount}} from {{customerName}}",
    "payment_due": (
        "Hi {{name}}, friendly reminder that invoice #{{invoiceNumber}} for {{amount}} is due today. "
        "Here's a quick link to pay: {{paymentLink}}. Thanks!"
    ),
    "payment_day_3": (
        "Hi {{name}}, following up on invoice #{{invoiceNumber}} for {{amount}}, now a few days past due. "
        "Please let me know if you have any questions. Pay here: {{paymentLink}}"
    ),
    "payment_day_7": (
        "Hi {{name}}, just a reminder that invoice #{{invoiceNumber}} for {{amount}} is now 7 days past due. "
        "If there's an issue, let me know. Otherwise, here's the link: {{paymentLink}}"
    ),
    "payment_day_14": (
        "Hi {{name}}, final reminder on invoice #{{invoiceNumber}} for {{amount}}, now 14 days past due. "
        "Please reach out if we need to discuss. Pay here: {{paymentLink}}"
    ),
    "opt_out_confirmation": (
        "You've been unsubscribed. You won't receive further messages from {{businessName}}. "
        "Reply START to resubscribe."
    ),
    "opt_in_confirmation": (
        "You've been resubscribed to messages from {{businessName}}. Reply STOP to unsubscribe."
    ),
    "nps_thanks": "Thanks for the feedback! It means a lot to everyone at {{businessName}}.",
}

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def render_template(template_type: str, variables: dict[str, object], custom_template: str | None = None) -> str:
    """Fill {{key}} placeholders; unknown keys are left in place, None renders empty."""
    template = custom_template or DEFAULT_TEMPLATES.get(template_type, "")

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(replace, template)
