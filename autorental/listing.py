"""Search, sorting, pagination and slug helpers used by the index pages."""

import re
import unicodedata

from flask import request
from sqlalchemy import func, or_

from .extensions import db


def apply_search(query, term, *columns):
    """Filter ``query`` to rows where any column contains ``term``."""
    term = (term or '').strip()
    if not term:
        return query
    pattern = f"%{term}%"
    return query.filter(or_(*[column.ilike(pattern) for column in columns]))


def apply_sort(query, sort_by, sort_order, allowed, default):
    """Order by one of the whitelisted ``allowed`` columns.

    ``allowed`` maps request values to columns; unknown values fall back to
    ``default`` and anything other than ``asc`` sorts descending.
    """
    column = allowed.get(sort_by) if sort_by else None
    if column is None:
        column = allowed[default]
    if sort_order == 'asc':
        return query.order_by(column.asc())
    return query.order_by(column.desc())


def paginate(query, per_page):
    page = request.args.get('page', 1, type=int)
    return query.paginate(page=page, per_page=per_page, error_out=False)


def status_counts(model, column, values, base_query=None):
    """Return ``{value: count}`` for each value plus the overall ``total``."""
    query = base_query if base_query is not None else db.session.query(model)
    rows = dict(query.with_entities(column, func.count()).group_by(column).all())
    counts = {value: rows.get(value, 0) for value in values}
    counts['total'] = sum(rows.values())
    return counts


def slugify(text: str) -> str:
    text = unicodedata.normalize('NFKD', text or '').encode('ascii', 'ignore').decode('ascii')
    text = re.sub(r'[^\w\s-]', '', text).strip().lower()
    return re.sub(r'[-\s_]+', '-', text).strip('-')


def unique_slug(model, name, slug=None, exclude_id=None) -> str:
    """Slug for ``name`` (or the given ``slug``) not used by another row.

    Collisions get ``-1``, ``-2`` ... appended.  ``exclude_id`` ignores the
    row being updated.
    """
    base = slugify(slug or name) or 'item'
    candidate = base
    counter = 1
    while True:
        query = model.query.filter(model.slug == candidate)
        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)
        if query.first() is None:
            return candidate
        candidate = f"{base}-{counter}"
        counter += 1


def split_list(value):
    """Accept ``a,b`` or repeated query arguments and return a list."""
    values = request.args.getlist(value) if isinstance(value, str) else value
    items = []
    for raw in values or []:
        items.extend(part.strip() for part in str(raw).split(',') if part.strip())
    return items
