"""Default question bank and the seeder that keeps it in place."""

from collections import Counter
import logging
from typing import Dict, List

from sqlmodel import Session

from .. import models, repositories

logger = logging.getLogger("compliance.seed")

PASSWORD = "Password Management"
AUTHENTICATION = "Authentication"
DEVICE = "Device Security"
NETWORK = "Network Security"
DATA = "Data Protection"


def _q(category: str, weight: float, text: str, *options) -> dict:
    return {
        'text': text,
        'compliance_category': category,
        'weight': weight,
        'target_audience': models.TargetAudience.INDIVIDUAL,
        'options': [{'label': label, 'text': t, 'weight': w} for label, t, w in options],
    }


DEFAULT_QUESTIONS: List[dict] = [
    _q(PASSWORD, 10, "How do you manage your passwords across platforms?",
       ("A", "Use a password manager with unique passwords for each account", 100),
       ("B", "Maintain a notebook with all passwords written down", 60),
       ("C", "Use the same password with slight variations", 30),
       ("D", "Memorize one common password and reuse it", 10)),
    _q(PASSWORD, 8, "How often do you change your passwords?",
       ("A", "Every 3–6 months", 100),
       ("B", "Only when prompted or forced", 70),
       ("C", "Rarely or never", 30),
       ("D", "I only change them if there's a security issue", 50)),
    _q(PASSWORD, 9, "What is the length of your typical password?",
       ("A", "12+ characters with special symbols and numbers", 100),
       ("B", "8–11 characters with some variety", 75),
       ("C", "6–7 characters, mostly alphabets", 40),
       ("D", "4–5 characters, usually easy to remember", 10)),
    _q(AUTHENTICATION, 10, "Which authentication method is used for logging into company systems?",
       ("A", "Username + password + OTP or authenticator app", 100),
       ("B", "Username + password only", 60),
       ("C", "Biometric login only (fingerprint/face ID)", 80),
       ("D", "No authentication is required", 0)),
    _q(AUTHENTICATION, 10, "Which of these best describes how multi-factor authentication (MFA) is used by you?",
       ("A", "Enabled on all critical accounts (email, banking, work)", 100),
       ("B", "Enabled only on financial or work-related apps", 80),
       ("C", "Used rarely, only when enforced", 40),
       ("D", "Never used MFA", 0)),
    _q(DEVICE, 8, "How is your device protected when not in use?",
       ("A", "Auto-locked with strong password or biometric", 100),
       ("B", "Only screensaver or screen lock", 60),
       ("C", "No lock, anyone can use it", 0),
       ("D", "I manually lock it when I remember", 30)),
    _q(DEVICE, 9, "How is antivirus or endpoint protection managed?",
       ("A", "Centrally managed antivirus or EDR installed", 100),
       ("B", "Free antivirus software installed by the user", 70),
       ("C", "No antivirus installed", 0),
       ("D", "I'm not sure about protection status", 20)),
    _q(NETWORK, 7, "How do you connect to the internet for work or personal use?",
       ("A", "Secure, private Wi-Fi with WPA3 or WPA2 encryption", 100),
       ("B", "Home Wi-Fi with unchanged router password", 50),
       ("C", "Frequently use public Wi-Fi (cafes, malls, stations)", 20),
       ("D", "I use mobile hotspots most of the time", 70)),
    _q(DATA, 8, "How are system backups handled?",
       ("A", "Automated, encrypted backups to secure cloud", 100),
       ("B", "Manual backups done weekly", 70),
       ("C", "Occasionally backup important files", 40),
       ("D", "No backup process in place", 0)),
    _q(DATA, 7, "How is confidential data shared within your team?",
       ("A", "Through encrypted channels with limited access", 100),
       ("B", "Shared via internal tools like email or Slack", 60),
       ("C", "Shared freely with anyone who asks", 20),
       ("D", "No formal rule for data sharing", 30)),
]

EXPECTED_COUNTS: Dict[str, int] = dict(Counter(q['compliance_category'] for q in DEFAULT_QUESTIONS))


class QuestionSeeder:
    """Insert the default bank and keep per-category counts at the expected size."""
    def __init__(self, session: Session):
        self.session = session
        self.q_repo = repositories.QuestionRepository(session)

    def _insert(self, item: dict) -> models.Question:
        q = models.Question(
            text=item['text'],
            compliance_category=item['compliance_category'],
            weight=item['weight'],
            target_audience=item['target_audience'],
        )
        options = [models.QuestionOption(**o) for o in item['options']]
        return self.q_repo.create(q, options)

    def _remove(self, q: models.Question) -> bool:
        """Delete `q`, or deactivate it when answers reference it. True on delete."""
        if self.q_repo.is_referenced(q.id):
            q.active = False
            self.q_repo.save(q)
            return False
        self.q_repo.delete(q)
        return True

    def reconcile(self) -> dict:
        """Top up missing default questions and trim surplus ones per category.

        Surplus questions are removed newest first; questions that
        already have answers are deactivated rather than deleted.
        """
        added = removed = 0
        for category, expected in EXPECTED_COUNTS.items():
            current = self.q_repo.list_by_filter(active=True, compliance_category=category)
            present = {q.text for q in current}
            missing = [item for item in DEFAULT_QUESTIONS
                       if item['compliance_category'] == category and item['text'] not in present]
            for item in missing[:max(0, expected - len(current))]:
                self._insert(item)
                added += 1
            if len(current) > expected:
                for q in sorted(current, key=lambda q: q.id, reverse=True)[:len(current) - expected]:
                    self._remove(q)
                    removed += 1
        if added or removed:
            logger.info("question bank reconciled: %d added, %d removed", added, removed)
        total = len(self.q_repo.list_by_filter(active=True))
        return {'added': added, 'removed': removed, 'total': total}

    def force_seed(self) -> dict:
        """Clear the bank and insert the default questions again.

        Questions that recorded answers point at are deactivated rather
        than deleted, so stored history keeps its question ids.
        """
        deleted = deactivated = 0
        for q in self.q_repo.list_by_filter():
            if self._remove(q):
                deleted += 1
            else:
                deactivated += 1
        for item in DEFAULT_QUESTIONS:
            self._insert(item)
        logger.warning("question bank force-seeded: %d deleted, %d deactivated, %d inserted",
                       deleted, deactivated, len(DEFAULT_QUESTIONS))
        return {'deleted': deleted, 'deactivated': deactivated, 'inserted': len(DEFAULT_QUESTIONS)}
