"""
shared/utils/i18n.py
Localised notification strings. The language is carried explicitly by a
Translator instance rather than read from ambient state.
"""

from typing import Dict, Optional

from config.settings import settings

SUPPORTED_LANGUAGES = ("ar", "fr", "en")

TRANSLATIONS: Dict[str, Dict[str, str]] = {
    "en": {
        "booking_request.title": "🔔 New booking request",
        "booking_request.message": "{client_name} would like to book your services on {date} at {time}. Open your bookings to accept or decline.",
        "booking_confirmed.title": "🎉 Booking confirmed!",
        "booking_confirmed.message": "Great news! {provider_name} has confirmed your booking on {date} at {time}. A chat room is now open so you can talk directly with your provider.",
        "booking_declined.title": "📋 Booking declined",
        "booking_declined.message": "{provider_name} was unable to accommodate your booking request on {date} at {time}. You can look for other providers or try a different time slot.",
        "booking_cancelled.title": "Booking cancelled",
        "booking_cancelled.message": "{actor_name} cancelled the booking scheduled on {date} at {time}.",
        "new_message.title": "New message",
        "new_message.message": "{sender_name} sent you a message about: {service_details}",
        "fallback.client": "A client",
        "fallback.provider": "Your provider",
        "fallback.user": "A user",
        "fallback.service": "Service booking",
        "fallback.date": "--/--/----",
        "fallback.time": "--:--",
        "email.footer": "You received this email because you have an account on {app_name}.",
    },
    "fr": {
        "booking_request.title": "🔔 Nouvelle demande de réservation",
        "booking_request.message": "{client_name} souhaite réserver vos services le {date} à {time}. Consultez vos réservations pour accepter ou décliner.",
        "booking_confirmed.title": "🎉 Réservation confirmée !",
        "booking_confirmed.message": "Bonne nouvelle ! {provider_name} a confirmé votre réservation du {date} à {time}. Une discussion est ouverte pour échanger directement avec votre prestataire.",
        "booking_declined.title": "📋 Réservation déclinée",
        "booking_declined.message": "{provider_name} n'a pas pu accepter votre demande du {date} à {time}. Vous pouvez chercher d'autres prestataires ou choisir un autre créneau.",
        "booking_cancelled.title": "Réservation annulée",
        "booking_cancelled.message": "{actor_name} a annulé la réservation prévue le {date} à {time}.",
        "new_message.title": "Nouveau message",
        "new_message.message": "{sender_name} vous a envoyé un message concernant : {service_details}",
        "fallback.client": "Un client",
        "fallback.provider": "Votre prestataire",
        "fallback.user": "Un utilisateur",
        "fallback.service": "Réservation de service",
        "email.footer": "Vous recevez cet e-mail car vous avez un compte sur {app_name}.",
    },
    "ar": {
        "booking_request.title": "🔔 طلب حجز جديد",
        "booking_request.message": "يرغب {client_name} في حجز خدماتك يوم {date} على الساعة {time}. راجع حجوزاتك للقبول أو الرفض.",
        "booking_confirmed.title": "🎉 تم تأكيد الحجز!",
        "booking_confirmed.message": "أخبار سارة! قام {provider_name} بتأكيد حجزك يوم {date} على الساعة {time}. يمكنك الآن التواصل مباشرة مع مقدم الخدمة.",
        "booking_declined.title": "📋 تم رفض الحجز",
        "booking_declined.message": "لم يتمكن {provider_name} من قبول طلبك ليوم {date} على الساعة {time}. يمكنك البحث عن مقدمي خدمات آخرين أو اختيار موعد آخر.",
        "booking_cancelled.title": "تم إلغاء الحجز",
        "booking_cancelled.message": "قام {actor_name} بإلغاء الحجز المقرر يوم {date} على الساعة {time}.",
        "new_message.title": "رسالة جديدة",
        "new_message.message": "أرسل لك {sender_name} رسالة بخصوص: {service_details}",
        "fallback.client": "عميل",
        "fallback.provider": "مقدم الخدمة",
        "fallback.user": "مستخدم",
        "fallback.service": "حجز خدمة",
        "email.footer": "تلقيت هذا البريد لأن لديك حسابًا على {app_name}.",
    },
}


class _Params(dict):
    """Leaves an unknown placeholder as-is instead of raising KeyError."""

    def __missing__(self, key):
        return "{" + key + "}"


class Translator:
    """Key → string lookup bound to one language, falling back to English."""

    def __init__(self, language: Optional[str] = None):
        language = (language or settings.DEFAULT_LANGUAGE).lower()
        self.language = language if language in SUPPORTED_LANGUAGES else settings.DEFAULT_LANGUAGE

    def t(self, key: str, **params) -> str:
        template = TRANSLATIONS[self.language].get(key) or TRANSLATIONS["en"].get(key, key)
        return template.format_map(_Params(params)) if params else template

    def __repr__(self) -> str:
        return f"<Translator {self.language}>"

