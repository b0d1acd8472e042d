"""Selection of SOURCE workflows before a run."""

from typing import Any

from n8n_transfer.models import TransferFilters, workflow_tag_names


def apply_filters(
    workflows: list[dict[str, Any]], filters: TransferFilters | None
) -> list[dict[str, Any]]:
    """Keep the workflows matching every configured filter.

    Args:
        workflows: SOURCE workflow payloads
        filters: ``workflow_ids`` and ``workflow_names`` keep exact matches,
            ``tags`` keeps workflows carrying any listed tag, ``exclude_tags``
            drops workflows carrying any listed tag. Empty lists are ignored.

    Returns:
        Matching workflows, in their original order
    """
    if filters is None:
        return list(workflows)

    ids = set(filters.workflow_ids)
    names = set(filters.workflow_names)
    tags = set(filters.tags)
    excluded = set(filters.exclude_tags)

    selected = []
    for workflow in workflows:
        if ids and str(workflow.get("id")) not in ids:
            continue
        if names and workflow.get("name") not in names:
            continue
        workflow_tags = workflow_tag_names(workflow)
        if tags and not workflow_tags & tags:
            continue
        if excluded and workflow_tags & excluded:
            continue
        selected.append(workflow)
    return selected
