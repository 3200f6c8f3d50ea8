"""Catalog of named notification templates."""

from dataclasses import dataclass
from typing import Optional
import re

from src.notifications.config import NotificationType
from src.notifications.errors import UnknownTemplateError
from src.notifications.models import Notification


@dataclass(frozen=True)
class NotificationTemplate:
    """Default title, body and type for a named notification."""

    title: str
    body: str
    type: NotificationType


TEMPLATES: dict[str, NotificationTemplate] = {
    "welcome": NotificationTemplate(
        title="🎉 Bienvenue {user_name} !",
        body="Commencez votre parcours santé avec AVA Coach. Nous sommes là pour vous accompagner !",
        type=NotificationType.WELCOME,
    ),
    "daily_reminder": NotificationTemplate(
        title="💪 N'oubliez pas votre objectif santé !",
        body="Il est temps de faire le point sur votre journée.",
        type=NotificationType.REMINDER,
    ),
    "hydration_reminder": NotificationTemplate(
        title="💧 Rappel Hydratation",
        body="N'oubliez pas de boire de l'eau !",
        type=NotificationType.HEALTH_REMINDER,
    ),
    "workout_reminder": NotificationTemplate(
        title="🏃 Temps d'Activité !",
        body="Il est temps de bouger ! Que diriez-vous d'un peu d'exercice ?",
        type=NotificationType.HEALTH_REMINDER,
    ),
    "sleep_reminder": NotificationTemplate(
        title="🌙 Préparation au Sommeil",
        body="Il est temps de vous préparer pour une bonne nuit de repos !",
        type=NotificationType.HEALTH_REMINDER,
    ),
    "achievement": NotificationTemplate(
        title="🏆 Nouveau Succès !",
        body="Félicitations pour vos progrès !",
        type=NotificationType.ACHIEVEMENT,
    ),
    "achievement_unlocked": NotificationTemplate(
        title="🏆 Nouveau Succès Débloqué !",
        body="Félicitations ! Vous avez atteint : {achievement_title}",
        type=NotificationType.ACHIEVEMENT,
    ),
    "health_alert": NotificationTemplate(
        title="{alert_icon} Alerte Santé",
        body="Une action est recommandée pour votre bien-être.",
        type=NotificationType.HEALTH_ALERT,
    ),
    "premium_feature": NotificationTemplate(
        title="✨ Fonctionnalité Premium disponible",
        body="Découvrez de nouvelles possibilités avec votre abonnement.",
        type=NotificationType.PREMIUM,
    ),
    "subscription_upgrade": NotificationTemplate(
        title="⭐ Mise à niveau Premium !",
        body="Bienvenue dans {tier_name} ! Découvrez vos nouvelles fonctionnalités.",
        type=NotificationType.SUBSCRIPTION,
    ),
    "test": NotificationTemplate(
        title="🧪 Test de notification",
        body="Ceci est une notification de test",
        type=NotificationType.TEST,
    ),
}


# plain {name} fields only; attribute, index and format-spec fields stay literal
_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _fill(text: str, values: dict[str, str]) -> str:
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), text)


def list_templates() -> dict[str, dict]:
    """Template catalog as plain dicts."""
    return {
        name: {"title": t.title, "body": t.body, "type": t.type.value}
        for name, t in TEMPLATES.items()
    }


def render(
    name: str,
    overrides: Optional[dict] = None,
    variables: Optional[dict] = None,
) -> Notification:
    """Build a notification from a template.

    ``overrides`` (title, body, data, image_url) replace the defaults;
    ``variables`` fill ``{placeholders}`` in title and body.
    """
    template = TEMPLATES.get(name)
    if template is None:
        raise UnknownTemplateError(name, available=sorted(TEMPLATES))

    overrides = overrides or {}
    values = {k: str(v) for k, v in (variables or {}).items()}

    title = overrides.get("title") or template.title
    body = overrides.get("body") or template.body

    return Notification(
        title=_fill(title, values),
        body=_fill(body, values),
        type=template.type,
        image_url=overrides.get("image_url"),
        data=dict(overrides.get("data") or {}),
    )
