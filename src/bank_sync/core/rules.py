"""
Merchant normalization rules.
"""

import re
from typing import Iterable, List, Pattern, Tuple

from bank_sync.core.config import NormalizationRule
from bank_sync.models.transaction import MAX_PAYEE_LENGTH, Transaction


class RulesEngine:
    """
    Applies ordered payee rewrite rules to parsed transactions.

    Rules compose left to right: each rule is tested against the payee as
    left by the previous rules, so a later rule can overwrite an earlier
    rewrite.
    """

    def __init__(self, rules: Iterable[NormalizationRule] = ()):
        self.rules: List[NormalizationRule] = list(rules)
        self._compiled: List[Tuple[Pattern[str], NormalizationRule]] = [
            (re.compile(rule.match, re.IGNORECASE), rule) for rule in self.rules
        ]

    def apply(self, transaction: Transaction) -> Transaction:
        """Return a copy of transaction with all matching rules applied."""
        payee = transaction.payee
        memo = transaction.memo

        for pattern, rule in self._compiled:
            if not pattern.search(payee):
                continue
            if rule.payee:
                payee = rule.payee
            if rule.memo:
                memo = f"{memo} {rule.memo}" if memo else rule.memo

        if payee == transaction.payee and memo == transaction.memo:
            return transaction
        return transaction.model_copy(
            update={"payee": payee[:MAX_PAYEE_LENGTH], "memo": memo}
        )
