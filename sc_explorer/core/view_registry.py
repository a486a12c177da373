from __future__ import annotations

from typing import Dict, List, Optional, Type

from .base_view import BaseView
from .dataset import Dataset


class ViewRegistry:
    """
    Registry for view classes so the UI can build plots by id.

    - Stores the subclasses of {@link BaseView}, not instances, so that each view
      is instantiated on demand for the dataset currently on screen
    - Only {@link BaseView} subclasses can be registered and each 'id' is unique
    """

    def __init__(self):
        self._views: Dict[str, Type[BaseView]] = {}

    def register(self, view_cls: Type[BaseView]) -> None:
        """
        Register a {@link BaseView} with the registry

        Raises:
            TypeError: if view_cls is not a subclass of {@link BaseView}
            ValueError: if a view with same 'id' already exists
        """
        if not isinstance(view_cls, type) or not issubclass(view_cls, BaseView):
            raise TypeError(f"View '{getattr(view_cls, 'id', view_cls)}' must be a subclass of BaseView")

        if view_cls.id in self._views:
            raise ValueError(f"View '{view_cls.id}' already registered")

        self._views[view_cls.id] = view_cls

    def create(self, view_id: str, dataset: Optional[Dataset], scale_factor: float = 0.7) -> BaseView:
        """
        Instantiate a view for the given view_id.

        Raises:
            KeyError: if no view with the given id exists in the registry
        """
        try:
            cls = self._views[view_id]
        except KeyError:
            raise KeyError(f"View '{view_id}' not found")
        return cls(dataset, scale_factor=scale_factor)

    def all_classes(self) -> List[Type[BaseView]]:
        return list(self._views.values())

    def ids(self) -> List[str]:
        return list(self._views)
