from __future__ import annotations

from sqlalchemy import update

from marketpay.extensions import db


def compare_and_set(model, row_id: int, *, expected: dict, values: dict) -> bool:
    """Conditional single-row UPDATE.

    ``expected`` maps column name to the value the row must still hold (a
    tuple means any of). Returns False when another worker moved the row
    first, in which case nothing was written.
    """
    conditions = [model.id == int(row_id)]
    for name, want in expected.items():
        col = getattr(model, name)
        if want is None:
            conditions.append(col.is_(None))
        elif isinstance(want, (tuple, list, set)):
            conditions.append(col.in_(list(want)))
        else:
            conditions.append(col == want)

    res = db.session.execute(update(model).where(*conditions).values(**values))
    return res.rowcount == 1
