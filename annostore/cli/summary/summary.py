import json
import logging
import sys
from gettext import gettext as _

from annostore.config import load_config
from annostore.core.store import AnnotationStore, ChangeEvent, Origin
from annostore.w3c import parse_w3c_annotation

logger = logging.getLogger(__name__)


def load_w3c_records(path):
    with open(path, "r") as f:
        data = json.load(f)

    # A bare record, a list of records, or a W3C AnnotationPage
    if isinstance(data, dict) and "items" in data:
        data = data["items"]
    if isinstance(data, dict):
        data = [data]
    return data


def handle(args):
    records = load_w3c_records(args.input)
    logger.info(
        _("Loaded {n} records from {path}").format(n=len(records), path=args.input)
    )

    store = AnnotationStore(config=load_config())

    def on_change(event: ChangeEvent):
        logger.debug(
            _("Store now holds {n} annotations").format(n=len(event.state))
        )

    store.observe(on_change)
    store.bulk_add_annotations(
        [parse_w3c_annotation(r) for r in records], replace=True, origin=Origin.REMOTE
    )

    for annotation in store.all():
        source = annotation.target.extra.get("source", "-")
        print(f"{annotation.id}\t{len(annotation.bodies)}\t{source}")

    problems = store.check_consistency()
    for problem in problems:
        logger.error(_("Store integrity error: {problem}").format(problem=problem))
    if problems and args.strict:
        sys.exit(1)
    return store
