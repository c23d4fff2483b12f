import json
import httpx
from loguru import logger
from ..core.config import settings
from ..models.invoice import Invoice

# Lightweight workflow notification: post an Adaptive Card to a Teams Incoming Webhook.
# The card links back to the invoice so the next approver can act on it.

ADAPTIVE_CARD_TEMPLATE = {
    "type": "message",
    "attachments": [{
        "contentType": "application/vnd.microsoft.card.adaptive",
        "content": {
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": [
                {"type": "TextBlock", "weight": "Bolder", "size": "Medium", "text": "Invoice Update"},
                {"type": "TextBlock", "wrap": True, "text": ""},
                {"type": "FactSet", "facts": []}
            ],
            "actions": []
        }
    }]
}

ROLE_TITLES = {
    "head": "Head of Department",
    "procurement": "Procurement",
    "pmo": "PMO",
}


def build_workflow_card(invoice: Invoice, action: str, notify_role: str) -> dict:
    card = json.loads(json.dumps(ADAPTIVE_CARD_TEMPLATE))
    body = card["attachments"][0]["content"]["body"]
    role = ROLE_TITLES.get(notify_role, notify_role)
    body[0]["text"] = f"Invoice {invoice.invoice_number} needs {role} attention"
    body[1]["text"] = f"Workflow action '{action}' moved this invoice to {invoice.status.label}."

    facts = body[2]["facts"]
    for title, value in (
        ("Vendor", invoice.vendor_name),
        ("Invoice #", invoice.invoice_number),
        ("Invoice date", invoice.invoice_date.isoformat()),
        ("Amount", f"{invoice.currency} {invoice.invoice_value}"),
        ("Status", invoice.status.label),
        ("Updated by", invoice.modified_by),
    ):
        if value is not None:
            facts.append({"title": title, "value": str(value)})

    card["attachments"][0]["content"]["actions"] = [
        {
            "type": "Action.OpenUrl",
            "title": "Open invoice",
            "url": f"{settings.api_base_url}/invoices/{invoice.id}"
        },
        {
            "type": "Action.OpenUrl",
            "title": "View history",
            "url": f"{settings.api_base_url}/invoices/{invoice.id}/history"
        }
    ]
    return card


async def post_workflow_card(invoice: Invoice, action: str, notify_role: str) -> dict:
    if not settings.teams_webhook_url:
        return {"status": "skipped", "reason": "TEAMS_WEBHOOK_URL not set"}

    card = build_workflow_card(invoice, action, notify_role)

    async with httpx.AsyncClient(timeout=10) as client:
        r = await client.post(settings.teams_webhook_url, json=card)
        logger.info(
            "Posted workflow card to Teams",
            invoice_id=invoice.id,
            role=notify_role,
            http_status=r.status_code,
        )
        return {"status": "sent", "http_status": r.status_code}
