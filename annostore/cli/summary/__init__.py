from gettext import gettext as _
from pathlib import Path

COMMAND_DESCRIPTION = _("Load a W3C annotation file into a store and summarize it")


def command(subparser):
    subparser.add_argument("input", type=Path)
    subparser.add_argument(
        "--strict",
        action="store_true",
        help=_("Exit with an error if the loaded store is inconsistent"),
    )

    def handle(args):
        from .summary import handle as summary_handle

        return summary_handle(args)

    return handle
