"""File parsing utilities that convert supported file formats into a
normalized question list.

Supported input types: JSON and CSV. Parsers return a list of
dictionaries shaped like `schemas.QuestionIn`: `text`,
`compliance_category`, `weight`, `target_audience`, `active` and
`options` (each `{label, text, weight}`). Validation of the values is
left to the caller.
"""

import io
import json
import csv
from typing import List, Dict


def parse_file_to_questions(file_bytes: bytes, filename: str) -> List[Dict]:
    """Dispatch to the appropriate parser based on file extension."""
    name = filename.lower()
    if name.endswith('.json'):
        return parse_json(file_bytes)
    if name.endswith('.csv'):
        return parse_csv(file_bytes)
    raise ValueError('Unsupported file type')


def parse_json(b: bytes):
    """Parse a JSON array of question objects and normalize them."""
    try:
        data = json.loads(b.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f'Invalid JSON: {e}')
    if isinstance(data, dict):
        data = data.get('questions') or []
    if not isinstance(data, list):
        raise ValueError('Expected a JSON array of questions')
    return [normalize_question(item) for item in data if isinstance(item, dict)]


def parse_csv(b: bytes):
    """Parse a CSV with one question per row.

    Expected columns: `text` (or `question`), `compliance_category` (or
    `category`), `weight`, optional `target_audience` and `options`.
    Options are pipe separated, each written `label:text:weight`, e.g.
    `A:Use a password manager:100|B:Reuse one password:10`.
    """
    out = []
    sio = io.StringIO(b.decode('utf-8-sig'))
    reader = csv.DictReader(sio)
    for row in reader:
        item = {
            'text': row.get('text') or row.get('question') or '',
            'compliance_category': row.get('compliance_category') or row.get('category') or '',
            'weight': _coerce_float(row.get('weight')),
            'target_audience': row.get('target_audience') or 'both',
            'options': [],
        }
        options_raw = row.get('options') or ''
        for part in options_raw.split('|'):
            if part.strip():
                item['options'].append(_parse_option(part.strip()))
        out.append(item)
    return out


def normalize_question(item: dict) -> dict:
    """Normalize a parsed question object (maps alternative keys to the
    canonical output shape).
    """
    options = item.get('options') or []
    return {
        'text': item.get('text') or item.get('question_text') or item.get('question') or '',
        'compliance_category': item.get('compliance_category') or item.get('complianceCategory')
        or item.get('category') or '',
        'weight': _coerce_float(item.get('weight')),
        'target_audience': item.get('target_audience') or _audience(item.get('userType')) or 'both',
        'active': item.get('active', True) is not False,
        'options': [
            {'label': o.get('label') or o.get('value') or '', 'text': o.get('text') or '',
             'weight': _coerce_float(o.get('weight'))}
            for o in options if isinstance(o, dict)
        ],
    }


def _audience(user_type):
    # exports of the older schema use userType user/company/both
    return {'user': 'individual', 'company': 'company', 'both': 'both'}.get(user_type)


def _parse_option(text: str) -> dict:
    """Split `label:text:weight`; the text itself may contain colons."""
    label, _, rest = text.partition(':')
    body, _, weight = rest.rpartition(':')
    if not body:
        body, weight = rest, None
    return {'label': label.strip(), 'text': body.strip(), 'weight': _coerce_float(weight)}


def _coerce_float(val):
    try:
        return float(val) if val is not None and str(val).strip() != '' else None
    except (TypeError, ValueError):
        return None
