"""Read-side outline helpers: rebuild the ordered note forest from flat rows."""

from text_helpers import _html_to_plain_text


def _dict_get(name):
    return lambda item: item.get(name)


def _attr_get(name):
    return lambda item: getattr(item, name)


def _chain_order(members, ident, prev_of, next_of):
    """
    Order one sibling group by walking `next` from the head.

    The head is the first member whose `previous` is empty. The walk stops at a
    missing `next` target or a node already visited. Members the walk never
    reached are appended in input order, so each member is returned exactly once.
    Returns (ordered, broken) where `broken` is True when that fallback was used.
    """
    if not members:
        return [], False
    by_id = {ident(m): m for m in members}
    head = next((m for m in members if not prev_of(m)), None)

    ordered = []
    seen = set()
    node = head
    while node is not None and ident(node) not in seen:
        ordered.append(node)
        seen.add(ident(node))
        following = next_of(node)
        node = by_id.get(following) if following else None

    broken = len(ordered) != len(members)
    if broken:
        ordered.extend(m for m in members if ident(m) not in seen)
    return ordered, broken


def order_siblings(notes):
    """Order Note rows that share a parent by their previous/next links."""
    ordered, _ = _chain_order(notes, _attr_get('id'), _attr_get('previous'), _attr_get('next'))
    return ordered


def is_single_chain(notes):
    """True when Note rows sharing a parent link up as one list from one head."""
    if not notes:
        return True
    by_id = {n.id: n for n in notes}
    heads = [n for n in notes if not n.previous]
    tails = [n for n in notes if not n.next]
    if len(heads) != 1 or len(tails) != 1:
        return False
    for n in notes:
        if n.next and (n.next not in by_id or by_id[n.next].previous != n.id):
            return False
        if n.previous and (n.previous not in by_id or by_id[n.previous].next != n.id):
            return False
    _, broken = _chain_order(notes, _attr_get('id'), _attr_get('previous'), _attr_get('next'))
    return not broken


def notes_list_to_tree(notes, logger=None):
    """
    Turn a flat list of note dicts into an ordered forest.

    Roots (no parentId) linked by previous/next come first, in chain order.
    Unsorted notes (no previous, next or parentId) and notes whose parent is not
    in the list follow in input order. Every note gets a `children` list.
    """
    nodes = [dict(n, children=[]) for n in notes]
    ids = {n['id'] for n in nodes}

    groups = {}
    trailing = []
    for node in nodes:
        parent_id = node.get('parentId')
        if parent_id is None:
            if not node.get('previous') and not node.get('next'):
                trailing.append(node)
                continue
        elif parent_id not in ids or parent_id == node['id']:
            trailing.append(node)
            continue
        groups.setdefault(parent_id, []).append(node)

    ident = _dict_get('id')
    prev_of = _dict_get('previous')
    next_of = _dict_get('next')
    ordered_groups = {}
    for parent_id, members in groups.items():
        ordered, broken = _chain_order(members, ident, prev_of, next_of)
        if broken and logger:
            logger.warning("Broken sibling chain under parent %s; fell back to input order", parent_id)
        ordered_groups[parent_id] = ordered

    for node in nodes:
        node['children'] = ordered_groups.get(node['id'], [])

    roots = ordered_groups.get(None, []) + trailing

    # Nodes caught in a parent cycle are unreachable from any root
    reachable = set()
    stack = list(roots)
    while stack:
        node = stack.pop()
        if node['id'] in reachable:
            continue
        reachable.add(node['id'])
        stack.extend(node['children'])
    if len(reachable) != len(nodes):
        if logger:
            logger.warning("Outline has notes in a parent cycle; listing them at the end")
        for node in nodes:
            if node['id'] not in reachable:
                node['children'] = []
                roots.append(node)
    return roots


def chain_problems(notes):
    """Describe every previous/next/parentId inconsistency in a flat note list."""
    problems = []
    by_id = {n['id']: n for n in notes}

    groups = {}
    for note in notes:
        parent_id = note.get('parentId')
        if parent_id is not None and parent_id not in by_id:
            problems.append(f"note {note['id']}: parent {parent_id} is not in the outline")
        if parent_id is None and not note.get('previous') and not note.get('next'):
            continue
        groups.setdefault(parent_id, []).append(note)

    for note in notes:
        for field, back in (('previous', 'next'), ('next', 'previous')):
            target_id = note.get(field)
            if not target_id:
                continue
            target = by_id.get(target_id)
            if target is None:
                problems.append(f"note {note['id']}: {field} {target_id} is not in the outline")
            elif target.get(back) != note['id']:
                problems.append(f"note {note['id']}: {field} {target_id} does not link back")
            elif target.get('parentId') != note.get('parentId'):
                problems.append(f"note {note['id']}: {field} {target_id} is at a different level")

    for parent_id, members in groups.items():
        label = f"parent {parent_id}" if parent_id else "top level"
        heads = [m['id'] for m in members if not m.get('previous')]
        tails = [m['id'] for m in members if not m.get('next')]
        if len(heads) != 1:
            problems.append(f"{label}: expected one first note, found {len(heads)}")
        if len(tails) != 1:
            problems.append(f"{label}: expected one last note, found {len(tails)}")
        _, broken = _chain_order(members, _dict_get('id'), _dict_get('previous'), _dict_get('next'))
        if broken:
            problems.append(f"{label}: notes are not a single linked list")

    for note in notes:
        seen = {note['id']}
        parent_id = note.get('parentId')
        while parent_id and parent_id in by_id:
            if parent_id in seen:
                problems.append(f"note {note['id']}: parent chain is circular")
                break
            seen.add(parent_id)
            parent_id = by_id[parent_id].get('parentId')
    return problems


def _note_text(note):
    parts = []
    for body in note.get('body') or []:
        text = _html_to_plain_text(body.get('content') or '')
        if text:
            parts.append(' '.join(text.split()))
    return ' / '.join(parts) or note.get('canonical') or note['id']


def outline_to_lines(tree, indent=0):
    """Render an assembled outline as indented bullet lines."""
    prefix = '  ' * indent
    lines = []
    for node in tree:
        lines.append(f"{prefix}- {_note_text(node)}")
        lines.extend(outline_to_lines(node.get('children') or [], indent + 1))
    return lines
