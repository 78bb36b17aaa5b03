import json
import httpx
from ...core.config import settings

# Optional extra channel for approval requests: post an Adaptive Card to a Teams
# Incoming Webhook that links back to the approval instance.

ADAPTIVE_CARD_TEMPLATE = {
    "type": "message",
    "attachments": [{
        "contentType": "application/vnd.microsoft.card.adaptive",
        "content": {
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": [
                {"type": "TextBlock", "weight": "Bolder", "size": "Medium", "text": "Approval Required"},
                {"type": "FactSet", "facts": []}
            ],
            "actions": []
        }
    }]
}

CARD_FACTS = ["request_name", "requester_name", "level", "total_amount", "currency", "duplicate_flags"]


async def post_approval_card(fields: dict, instance_id: str) -> dict:
    if not settings.teams_webhook_url:
        return {"status": "skipped", "reason": "TEAMS_WEBHOOK_URL not set"}

    base_url = settings.api_base_url

    card = json.loads(json.dumps(ADAPTIVE_CARD_TEMPLATE))
    facts = card["attachments"][0]["content"]["body"][1]["facts"]
    for k in CARD_FACTS:
        if k in fields and fields[k] is not None:
            facts.append({"title": k, "value": str(fields[k])})

    card["attachments"][0]["content"]["actions"] = [
        {
            "type": "Action.OpenUrl",
            "title": "Open approval",
            "url": f"{base_url}/approvals/{instance_id}"
        }
    ]

    async with httpx.AsyncClient(timeout=10) as client:
        r = await client.post(settings.teams_webhook_url, json=card)
        r.raise_for_status()
        return {"status": "sent", "http_status": r.status_code}
