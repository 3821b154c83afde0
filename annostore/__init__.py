import annostore.utils.i18n  # noqa: F401

from annostore.core.store import (  # noqa: F401
    Annotation,
    AnnotationStore,
    Body,
    BodyRef,
    ChangeEvent,
    ObserveOptions,
    Origin,
    Target,
    Update,
)
