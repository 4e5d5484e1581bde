"""Interface for presenting results to the user.

Defines the contract for displaying information, errors and structured
data, allowing different UI implementations (e.g., console, tests).
"""

import abc
from typing import Any, Dict, List, Sequence


class UserInterface(abc.ABC):
    """Abstract Base Class for user-facing output."""

    @abc.abstractmethod
    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays standard output to the user.

        Args:
            output: The text to display.
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_table(self, title: str, columns: Sequence[str], rows: List[Dict[str, Any]]) -> None:
        """Displays a list of records as a table.

        Args:
            title: Table caption.
            columns: Keys to show, in order.
            rows: Records; missing keys render as empty cells.
        """
        pass
