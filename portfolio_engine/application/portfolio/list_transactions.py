"""
Use case: List a user's transactions.

Input: ListTransactionsQuery (user_id, optional portfolio_id)
Output: list[TransactionResult], newest first
Side effects: None.
Failure cases: PortfolioNotFoundError when filtering by another user's portfolio.
"""

from portfolio_engine.application.portfolio.dtos import (
    ListTransactionsQuery,
    TransactionResult,
    to_transaction_result,
)
from portfolio_engine.domain.portfolio.errors import PortfolioNotFoundError
from portfolio_engine.domain.portfolio.ports import (
    PortfolioRepository,
    TransactionRepository,
)


class ListTransactionsUseCase:
    """Returns a user's transactions, optionally for one portfolio."""

    def __init__(
        self,
        transaction_repo: TransactionRepository,
        portfolio_repo: PortfolioRepository,
    ) -> None:
        self._transaction_repo = transaction_repo
        self._portfolio_repo = portfolio_repo

    def execute(self, query: ListTransactionsQuery) -> list[TransactionResult]:
        if query.portfolio_id is not None:
            portfolio = self._portfolio_repo.get_by_id(query.portfolio_id)
            if portfolio is None or portfolio.user_id != query.user_id:
                raise PortfolioNotFoundError(query.portfolio_id)

        transactions = self._transaction_repo.list_for_user(
            query.user_id, query.portfolio_id
        )
        return [to_transaction_result(t) for t in transactions]
