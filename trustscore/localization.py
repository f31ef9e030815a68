"""
TrustScore Engine - Message Catalogs
====================================

Static, reviewed wording for every supported language. Explanations are
rendered from these templates only, never generated ad hoc, so every
language says the same thing about the same factors.
"""

from typing import Dict, Tuple

from .schemas import Difficulty

# category -> (action key, expected point range, difficulty)
ACTION_CATALOG: Dict[str, Tuple[str, Tuple[int, int], Difficulty]] = {
    "payment_regularity": ("set_up_payment_schedule", (10, 30), Difficulty.EASY),
    "utility_timeliness": ("enable_bill_autopay", (8, 25), Difficulty.EASY),
    "spending_stability": ("plan_monthly_budget", (5, 20), Difficulty.MODERATE),
    "income_consistency": ("register_regular_income", (5, 15), Difficulty.MODERATE),
    "savings_ratio": ("build_emergency_buffer", (5, 20), Difficulty.HARD),
    "device_consistency": ("use_trusted_device", (2, 8), Difficulty.EASY),
    "overdraft_frequency": ("avoid_overdraft", (10, 35), Difficulty.MODERATE),
    "late_payment_ratio": ("clear_late_bills", (10, 30), Difficulty.MODERATE),
    "gambling_share": ("reduce_gambling_spend", (5, 25), Difficulty.HARD),
    "bill_payment_method": ("switch_to_direct_debit", (3, 10), Difficulty.EASY),
    "employment_type": ("document_income_sources", (2, 10), Difficulty.MODERATE),
}

# Categories without a dedicated action still get one recommendation.
GENERIC_ACTION: Tuple[str, Tuple[int, int], Difficulty] = ("review_category", (2, 10), Difficulty.MODERATE)

SCORE_BANDS: Tuple[Tuple[int, str], ...] = (
    (800, "excellent"),
    (740, "very_good"),
    (670, "good"),
    (580, "fair"),
    (300, "poor"),
)

MESSAGES: Dict[str, dict] = {
    "en": {
        "factors": {
            "payment_regularity": {
                "positive": "You pay recurring obligations on a regular schedule ({magnitude} positive effect).",
                "negative": "Irregular payment timing is lowering your score ({magnitude} negative effect).",
            },
            "utility_timeliness": {
                "positive": "Your utility bills are paid on time ({magnitude} positive effect).",
                "negative": "Late utility bill payments are lowering your score ({magnitude} negative effect).",
            },
            "spending_stability": {
                "positive": "Your monthly spending is steady ({magnitude} positive effect).",
                "negative": "Large swings in monthly spending are lowering your score ({magnitude} negative effect).",
            },
            "income_consistency": {
                "positive": "Your income arrives consistently ({magnitude} positive effect).",
                "negative": "Inconsistent income is lowering your score ({magnitude} negative effect).",
            },
            "savings_ratio": {
                "positive": "You keep part of your income as savings ({magnitude} positive effect).",
                "negative": "A low savings buffer is lowering your score ({magnitude} negative effect).",
            },
            "device_consistency": {
                "positive": "You use your accounts from familiar devices ({magnitude} positive effect).",
                "negative": "Frequent device changes are lowering your score ({magnitude} negative effect).",
            },
            "overdraft_frequency": {
                "positive": "You rarely go into overdraft ({magnitude} positive effect).",
                "negative": "Frequent overdrafts are lowering your score ({magnitude} negative effect).",
            },
            "late_payment_ratio": {
                "positive": "Very few of your bills are paid late ({magnitude} positive effect).",
                "negative": "A high share of late bills is lowering your score ({magnitude} negative effect).",
            },
            "gambling_share": {
                "positive": "Little of your spending goes to gambling ({magnitude} positive effect).",
                "negative": "Gambling spend is lowering your score ({magnitude} negative effect).",
            },
            "bill_payment_method": {
                "positive": "Your bill payment method supports on-time payment ({magnitude} positive effect).",
                "negative": "Your bill payment method makes missed payments more likely ({magnitude} negative effect).",
            },
            "employment_type": {
                "positive": "Your type of employment supports a stable income ({magnitude} positive effect).",
                "negative": "Your type of employment suggests a less predictable income ({magnitude} negative effect).",
            },
        },
        "generic_factor": {
            "positive": "{label} is helping your score ({magnitude} positive effect).",
            "negative": "{label} is lowering your score ({magnitude} negative effect).",
        },
        "magnitude": {"strong": "strong", "moderate": "moderate", "minor": "minor"},
        "bands": {
            "excellent": "excellent",
            "very_good": "very good",
            "good": "good",
            "fair": "fair",
            "poor": "poor",
        },
        "summary": "Your trust score is {score} ({band}).",
        "summary_main_factor": "The biggest influence is: {factor}",
        "no_factors": "No single factor stands out in your score.",
        "notes": {
            "insufficient_history": "This is a preliminary score: we are still collecting your history.",
            "partial_ensemble": "Part of the analysis was unavailable; the score uses the remaining signals.",
            "integrity_flag": "Some of your recent data needs additional checks, so confidence is reduced.",
            "integrity_unavailable": "Our data checks were temporarily unavailable, so confidence is reduced.",
            "signal_timeout": "One analysis did not respond in time.",
            "experiment": "This score was produced by a model under evaluation.",
        },
        "actions": {
            "set_up_payment_schedule": "Schedule your recurring payments for the same day each month.",
            "enable_bill_autopay": "Turn on automatic payment for your utility bills.",
            "plan_monthly_budget": "Set a monthly budget to keep spending steady.",
            "register_regular_income": "Link the accounts where your regular income is paid.",
            "build_emergency_buffer": "Put aside a small amount each month as an emergency buffer.",
            "use_trusted_device": "Use your usual phone or computer to manage your accounts.",
            "avoid_overdraft": "Keep a minimum balance to avoid going into overdraft.",
            "clear_late_bills": "Bring overdue bills up to date.",
            "reduce_gambling_spend": "Reduce or set limits on gambling spend.",
            "document_income_sources": "Connect all of your income sources so they are recognised.",
            "switch_to_direct_debit": "Pay your bills by direct debit instead of paying them manually.",
            "review_category": "Look into \"{label}\" to see what is holding your score back.",
        },
        "difficulty": {"easy": "easy", "moderate": "moderate", "hard": "hard"},
        "change": {
            "up": "Your score went up by {delta} points.",
            "down": "Your score went down by {delta} points.",
            "same": "Your score did not change.",
            "improved": "{label} improved.",
            "worsened": "{label} worsened.",
        },
        "labels": {
            "payment_regularity": "Payment regularity",
            "utility_timeliness": "Utility bill timeliness",
            "spending_stability": "Spending stability",
            "income_consistency": "Income consistency",
            "savings_ratio": "Savings",
            "device_consistency": "Device consistency",
            "overdraft_frequency": "Overdraft frequency",
            "late_payment_ratio": "Late payments",
            "gambling_share": "Gambling spend",
            "bill_payment_method": "Bill payment method",
            "employment_type": "Employment type",
        },
    },
    "es": {
        "factors": {
            "payment_regularity": {
                "positive": "Paga sus obligaciones recurrentes con regularidad (efecto positivo {magnitude}).",
                "negative": "La irregularidad en sus pagos reduce su puntuación (efecto negativo {magnitude}).",
            },
            "utility_timeliness": {
                "positive": "Paga sus facturas de servicios a tiempo (efecto positivo {magnitude}).",
                "negative": "Los pagos tardíos de servicios reducen su puntuación (efecto negativo {magnitude}).",
            },
            "spending_stability": {
                "positive": "Su gasto mensual es estable (efecto positivo {magnitude}).",
                "negative": "Las grandes variaciones en su gasto mensual reducen su puntuación (efecto negativo {magnitude}).",
            },
            "income_consistency": {
                "positive": "Sus ingresos llegan de forma constante (efecto positivo {magnitude}).",
                "negative": "La irregularidad de sus ingresos reduce su puntuación (efecto negativo {magnitude}).",
            },
            "savings_ratio": {
                "positive": "Ahorra una parte de sus ingresos (efecto positivo {magnitude}).",
                "negative": "Un colchón de ahorro bajo reduce su puntuación (efecto negativo {magnitude}).",
            },
            "device_consistency": {
                "positive": "Accede a sus cuentas desde dispositivos habituales (efecto positivo {magnitude}).",
                "negative": "Los cambios frecuentes de dispositivo reducen su puntuación (efecto negativo {magnitude}).",
            },
            "overdraft_frequency": {
                "positive": "Rara vez entra en descubierto (efecto positivo {magnitude}).",
                "negative": "Los descubiertos frecuentes reducen su puntuación (efecto negativo {magnitude}).",
            },
            "late_payment_ratio": {
                "positive": "Muy pocas de sus facturas se pagan tarde (efecto positivo {magnitude}).",
                "negative": "Una alta proporción de facturas atrasadas reduce su puntuación (efecto negativo {magnitude}).",
            },
            "gambling_share": {
                "positive": "Destina poco de su gasto a juegos de azar (efecto positivo {magnitude}).",
                "negative": "El gasto en juegos de azar reduce su puntuación (efecto negativo {magnitude}).",
            },
            "bill_payment_method": {
                "positive": "Su método de pago de facturas favorece los pagos puntuales (efecto positivo {magnitude}).",
                "negative": "Su método de pago de facturas hace más probables los impagos (efecto negativo {magnitude}).",
            },
            "employment_type": {
                "positive": "Su tipo de empleo favorece ingresos estables (efecto positivo {magnitude}).",
                "negative": "Su tipo de empleo sugiere ingresos menos previsibles (efecto negativo {magnitude}).",
            },
        },
        "generic_factor": {
            "positive": "{label} favorece su puntuación (efecto positivo {magnitude}).",
            "negative": "{label} reduce su puntuación (efecto negativo {magnitude}).",
        },
        "magnitude": {"strong": "fuerte", "moderate": "moderado", "minor": "leve"},
        "bands": {
            "excellent": "excelente",
            "very_good": "muy buena",
            "good": "buena",
            "fair": "aceptable",
            "poor": "baja",
        },
        "summary": "Su puntuación de confianza es {score} ({band}).",
        "summary_main_factor": "La mayor influencia es: {factor}",
        "no_factors": "Ningún factor destaca en su puntuación.",
        "notes": {
            "insufficient_history": "Esta es una puntuación preliminar: todavía estamos recopilando su historial.",
            "partial_ensemble": "Parte del análisis no estaba disponible; la puntuación usa las señales restantes.",
            "integrity_flag": "Algunos de sus datos recientes requieren comprobaciones adicionales, por lo que la confianza es menor.",
            "integrity_unavailable": "Nuestras comprobaciones de datos no estaban disponibles, por lo que la confianza es menor.",
            "signal_timeout": "Uno de los análisis no respondió a tiempo.",
            "experiment": "Esta puntuación la generó un modelo en evaluación.",
        },
        "actions": {
            "set_up_payment_schedule": "Programe sus pagos recurrentes para el mismo día de cada mes.",
            "enable_bill_autopay": "Active el pago automático de sus facturas de servicios.",
            "plan_monthly_budget": "Fije un presupuesto mensual para mantener estable su gasto.",
            "register_regular_income": "Vincule las cuentas donde recibe sus ingresos habituales.",
            "build_emergency_buffer": "Aparte una pequeña cantidad cada mes como fondo de emergencia.",
            "use_trusted_device": "Use su teléfono u ordenador habitual para gestionar sus cuentas.",
            "avoid_overdraft": "Mantenga un saldo mínimo para evitar descubiertos.",
            "clear_late_bills": "Ponga al día sus facturas atrasadas.",
            "reduce_gambling_spend": "Reduzca o limite el gasto en juegos de azar.",
            "document_income_sources": "Conecte todas sus fuentes de ingresos para que se reconozcan.",
            "switch_to_direct_debit": "Pague sus facturas mediante domiciliación bancaria en lugar de hacerlo manualmente.",
            "review_category": "Revise «{label}» para ver qué está frenando su puntuación.",
        },
        "difficulty": {"easy": "fácil", "moderate": "moderada", "hard": "difícil"},
        "change": {
            "up": "Su puntuación subió {delta} puntos.",
            "down": "Su puntuación bajó {delta} puntos.",
            "same": "Su puntuación no cambió.",
            "improved": "{label} mejoró.",
            "worsened": "{label} empeoró.",
        },
        "labels": {
            "payment_regularity": "Regularidad de pagos",
            "utility_timeliness": "Puntualidad en facturas de servicios",
            "spending_stability": "Estabilidad del gasto",
            "income_consistency": "Constancia de ingresos",
            "savings_ratio": "Ahorro",
            "device_consistency": "Constancia de dispositivos",
            "overdraft_frequency": "Frecuencia de descubiertos",
            "late_payment_ratio": "Pagos atrasados",
            "gambling_share": "Gasto en juegos de azar",
            "bill_payment_method": "Método de pago de facturas",
            "employment_type": "Tipo de empleo",
        },
    },
}


def catalog(language: str) -> dict:
    try:
        return MESSAGES[language]
    except KeyError:
        raise ValueError(f"Unsupported language: {language!r}") from None


def score_band(score: int) -> str:
    for floor, band in SCORE_BANDS:
        if score >= floor:
            return band
    return SCORE_BANDS[-1][1]


def label_for(language: str, category: str) -> str:
    return catalog(language)["labels"].get(category, category.replace("_", " ").capitalize())
