import logging

from backend.outline_tree import chain_problems, notes_list_to_tree, outline_to_lines


def _note(note_id, parent=None, previous=None, next=None, content=None):
    return {
        'id': note_id,
        'parentId': parent,
        'previous': previous,
        'next': next,
        'body': [{'motivation': 'commenting', 'content': content or f'note content {note_id}'}],
    }


# 1
#   4
#     6
#   2
#     7
#     3
#     8
# 5
NESTED_OUTLINE = [
    _note('1', next='5'),
    _note('2', parent='1', previous='4'),
    _note('3', parent='2', previous='7', next='8'),
    _note('4', parent='1', next='2'),
    _note('5', previous='1'),
    _note('6', parent='4'),
    _note('7', parent='2', next='3'),
    _note('8', parent='2', previous='3'),
]


def _shape(nodes):
    return [(n['id'], _shape(n['children'])) for n in nodes]


def _all_ids(nodes):
    ids = []
    for node in nodes:
        ids.append(node['id'])
        ids.extend(_all_ids(node['children']))
    return ids


def test_notes_list_to_tree_orders_nested_outline():
    tree = notes_list_to_tree(NESTED_OUTLINE)
    assert _shape(tree) == [
        ('1', [
            ('4', [('6', [])]),
            ('2', [('7', []), ('3', []), ('8', [])]),
        ]),
        ('5', []),
    ]


def test_notes_list_to_tree_does_not_mutate_input():
    notes = [dict(n) for n in NESTED_OUTLINE]
    notes_list_to_tree(notes)
    assert all('children' not in n for n in notes)


def test_notes_list_to_tree_is_stable_across_reads():
    assert notes_list_to_tree(NESTED_OUTLINE) == notes_list_to_tree(NESTED_OUTLINE)


def test_unsorted_notes_trail_the_ordered_roots():
    notes = [
        _note('u1'),
        _note('a', next='b'),
        _note('b', previous='a'),
        _note('u2'),
    ]
    assert _shape(notes_list_to_tree(notes)) == [('a', []), ('b', []), ('u1', []), ('u2', [])]


def test_missing_parent_goes_to_trailing_bucket():
    notes = [_note('2', parent='1', previous='4')]
    tree = notes_list_to_tree(notes)
    assert _all_ids(tree) == ['2']


def test_broken_chain_keeps_every_note_once(caplog):
    logger = logging.getLogger('outline-tree-test')
    notes = [
        _note('a', next='b'),
        _note('b', previous='a', next='gone'),
        _note('c', previous='x', next='d'),
        _note('d', previous='c'),
    ]
    with caplog.at_level(logging.WARNING, logger='outline-tree-test'):
        tree = notes_list_to_tree(notes, logger=logger)
    assert _all_ids(tree) == ['a', 'b', 'c', 'd']
    assert 'Broken sibling chain' in caplog.text


def test_next_cycle_does_not_loop_forever():
    notes = [
        _note('a', next='b'),
        _note('b', previous='a', next='a'),
        _note('c', previous='b'),
    ]
    assert sorted(_all_ids(notes_list_to_tree(notes))) == ['a', 'b', 'c']


def test_parent_cycle_notes_are_still_listed():
    notes = [
        _note('root', next='r2'),
        _note('r2', previous='root'),
        _note('x', parent='y'),
        _note('y', parent='x'),
    ]
    tree = notes_list_to_tree(notes)
    assert sorted(_all_ids(tree)) == ['r2', 'root', 'x', 'y']


def test_chain_problems_empty_for_consistent_outline():
    assert chain_problems(NESTED_OUTLINE) == []


def test_chain_problems_reports_asymmetric_and_dangling_links():
    notes = [
        _note('a', next='b'),
        _note('b', previous='z'),
    ]
    problems = chain_problems(notes)
    assert 'note a: next b does not link back' in problems
    assert 'note b: previous z is not in the outline' in problems


def test_chain_problems_reports_two_heads():
    notes = [
        _note('a', next='b'),
        _note('b', previous='a'),
        _note('c', next='d'),
        _note('d', previous='c'),
    ]
    problems = chain_problems(notes)
    assert 'top level: expected one first note, found 2' in problems


def test_chain_problems_reports_parent_cycle():
    notes = [_note('x', parent='y'), _note('y', parent='x')]
    problems = chain_problems(notes)
    assert 'note x: parent chain is circular' in problems


def test_outline_to_lines_indents_children():
    lines = outline_to_lines(notes_list_to_tree(NESTED_OUTLINE))
    assert lines[:3] == [
        '- note content 1',
        '  - note content 4',
        '    - note content 6',
    ]
    assert lines[-1] == '- note content 5'


def test_outline_to_lines_flattens_html_bodies():
    tree = [dict(_note('a', content='<p>First <strong>point</strong></p><p>second</p>'), children=[])]
    assert outline_to_lines(tree) == ['- First point second']
