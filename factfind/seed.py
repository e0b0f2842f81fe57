"""
Default insurance fact-find questions.

``DEFAULT_QUESTIONS`` uses local ids (1..45); ``dependsOn`` refers to those
ids. ``seed_questions`` maps them onto whatever ids the store assigns.
"""

import logging
from typing import Dict, List

from .storage.base import Storage

logger = logging.getLogger(__name__)

YES_NO = ["Yes", "No"]


def _q(local_id: int, text: str, type: str = "text", category: str = "", **extra) -> dict:
    question = {"id": local_id, "text": text, "type": type, "order": local_id, "category": category}
    question.update(extra)
    return question


def _if(question_id: int, value: str) -> dict:
    return {"questionId": question_id, "value": value}


DEFAULT_QUESTIONS: List[dict] = [
    # Personal circumstances
    _q(1, "Are you UK domiciled and a UK tax resident?", "multiple-choice", "Personal", options=YES_NO),
    _q(2, "What is your marital status?", "multiple-choice", "Personal",
       options=["Single", "Married", "Divorced"]),
    _q(3, "What is your relationship to the other applicant (if applicable)?", "text", "Personal",
       placeholder="e.g., Spouse, Partner, Sibling"),
    _q(4, "Do you have any dependents? (Would you like to add any dependants to your policy?)",
       "multiple-choice", "Personal", options=YES_NO),
    _q(5, "If yes, how many dependents do you have? (under 18)", "number", "Personal",
       dependsOn=_if(4, "Yes"), placeholder="Enter number"),
    _q(6, "How old are your dependents?", "text", "Personal",
       dependsOn=_if(4, "Yes"), placeholder="e.g., 5, 8, 12"),

    # Employment
    _q(7, "What is your occupation?", "text", "Employment", placeholder="Enter your occupation"),
    _q(8, "What is your employment status?", "multiple-choice", "Employment",
       options=["Employed", "Self-Employed", "Unemployed"]),
    _q(9, "If unemployed, please explain why.", "text", "Employment",
       dependsOn=_if(8, "Unemployed"), placeholder="Provide details"),

    # Health
    _q(10, "Do you smoke?", "multiple-choice", "Health", options=YES_NO),
    _q(11, "If no, have you smoked in the last 12 months?", "multiple-choice", "Health",
       options=YES_NO, dependsOn=_if(10, "No")),
    _q(12, "Are you classed as vulnerable?", "multiple-choice", "Health", options=YES_NO),
    _q(13, "If yes, please explain your vulnerability.", "text", "Health",
       dependsOn=_if(12, "Yes"), placeholder="Provide details"),
    _q(14, "Are you currently taking any medication?", "multiple-choice", "Health", options=YES_NO),
    _q(15, "If yes, please list the medication you are taking.", "text", "Health",
       dependsOn=_if(14, "Yes"), placeholder="List medications"),
    _q(16, "Do you do any exercise?", "multiple-choice", "Health", options=YES_NO),
    _q(17, "What is your height?", "text", "Health", placeholder="e.g., 175cm or 5'10\""),
    _q(18, "What is your weight?", "text", "Health", placeholder="e.g., 70kg or 154lbs"),

    # Interests
    _q(19, "Are any of the following of interest to you? (Please select all that apply)",
       "checkbox-multiple", "Interests",
       options=[
           "Life Insurance",
           "Critical Illness Cover",
           "Income Protection",
           "Mortgage Protection",
           "Pensions",
           "Investments",
           "Other",
       ]),
    _q(20, "Is there anything else you would like to add?", "text", "Interests",
       placeholder="Additional information"),

    # Income
    _q(21, "Gross Annual Income:", "number", "Income", prefix="£", placeholder="Enter amount"),
    _q(22, "Do you have any other income? (e.g., Child Support, Maintenance)", "multiple-choice",
       "Income", options=YES_NO),
    _q(23, "If yes, please specify amount and source:", "text", "Income",
       dependsOn=_if(22, "Yes"), prefix="£", placeholder="Amount and source"),

    # Monthly outgoings
    _q(24, "Mortgage Costs:", "number", "Outgoings", prefix="£", placeholder="Monthly amount"),
    _q(25, "Rental Costs:", "number", "Outgoings", prefix="£", placeholder="Monthly amount"),
    _q(26, "Household Bills:", "number", "Outgoings", prefix="£", placeholder="Monthly amount"),
    _q(27, "Gym/Sports Clubs:", "number", "Outgoings", prefix="£", placeholder="Monthly amount"),
    _q(28, "Insurance Costs:", "number", "Outgoings", prefix="£", placeholder="Monthly amount"),
    _q(29, "Overdraft, Loans, Credit Card Costs:", "number", "Outgoings", prefix="£",
       placeholder="Monthly amount"),
    _q(30, "Food/Clothes:", "number", "Outgoings", prefix="£", placeholder="Monthly amount"),
    _q(31, "Entertainment:", "number", "Outgoings", prefix="£", placeholder="Monthly amount"),
    _q(32, "Other expenses (please specify):", "text", "Outgoings", prefix="£",
       placeholder="Amount and details"),

    # Existing cover
    _q(33, "If you were off work due to sickness/accident, what would you receive?", "text",
       "Existing Cover", placeholder="Provide details"),
    _q(34, "Is this SSP?", "multiple-choice", "Existing Cover", options=YES_NO),
    _q(35, "Do you have Death in Service benefit at work?", "multiple-choice", "Existing Cover",
       options=YES_NO),
    _q(36, "Are you paying into a pension (Company/Personal)?", "multiple-choice", "Existing Cover",
       options=YES_NO),
    _q(37, "What is your National Insurance number?", "text", "Existing Cover",
       placeholder="e.g., AB123456C"),
    _q(38, "Do you have any other Life Insurances in place?", "multiple-choice", "Existing Cover",
       options=YES_NO),
    _q(39, "If yes, please provide the company name:", "text", "Existing Cover",
       dependsOn=_if(38, "Yes"), placeholder="Company name"),
    _q(40, "Sum Assured:", "number", "Existing Cover",
       dependsOn=_if(38, "Yes"), prefix="£", placeholder="Enter amount"),
    _q(41, "Do you have Buildings/Contents Insurance?", "multiple-choice", "Existing Cover",
       options=YES_NO),

    # Property and savings
    _q(42, "What is your current rent amount (if applicable)?", "number", "Property & Savings",
       prefix="£", placeholder="Monthly amount"),
    _q(43, "What is the remaining term on your mortgage?", "text", "Property & Savings",
       placeholder="e.g., 15 years"),
    _q(44, "What is the outstanding balance on your mortgage?", "number", "Property & Savings",
       prefix="£", placeholder="Enter amount"),
    _q(45, "How much do you have in savings or investments?", "number", "Property & Savings",
       prefix="£", placeholder="Enter amount"),
]


def seed_questions(storage: Storage, force: bool = False) -> int:
    """
    Load the default questions into ``storage``.

    Args:
        storage: Target store
        force: Seed even if the store already has questions

    Returns:
        Number of questions created (0 when skipped)
    """
    if not force and storage.list_questions():
        logger.info("Question store not empty, skipping seed")
        return 0

    stored_ids: Dict[int, int] = {}
    for definition in DEFAULT_QUESTIONS:
        payload = {k: v for k, v in definition.items() if k != "id"}
        depends_on = payload.get("dependsOn")
        if depends_on:
            payload["dependsOn"] = {**depends_on, "questionId": stored_ids[depends_on["questionId"]]}
        created = storage.create_question(payload)
        stored_ids[definition["id"]] = created.id

    logger.info("Seeded %d default questions", len(stored_ids))
    return len(stored_ids)
