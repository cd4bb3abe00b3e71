from abc import ABC, abstractmethod
from typing import List, Dict

class BaseFeed(ABC):
    @abstractmethod
    def fetch(self, offset: int = 0) -> List[Dict]:
        """Updates with an id >= ``offset``, oldest first."""
