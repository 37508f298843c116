import itertools
import random

import pytest

from osm_feature_extractor.config import Config
from osm_feature_extractor.entries import Entry, MalformedEntryError
from osm_feature_extractor.join import JoinedGroup, MergeJoinIterator, OutOfOrderKeyError, join_files

from .conftest import write_gzip_lines


def entries(*pairs):
    return tuple(Entry(key, value) for key, value in pairs)


def test_join_groups_matching_keys_and_drops_the_rest():
    left = entries(('1', 'a'), ('2', 'b'), ('2', 'b2'), ('4', 'd'))
    right = entries(('0', 'x'), ('2', 'y'), ('2', 'y2'), ('3', 'z'), ('4', 'w'))

    joined = MergeJoinIterator(left, right)
    groups = list(joined)

    assert groups == [
        JoinedGroup('2', entries(('2', 'b'), ('2', 'b2')), entries(('2', 'y'), ('2', 'y2'))),
        JoinedGroup('4', entries(('4', 'd')), entries(('4', 'w'))),
    ]
    assert joined.unmatched_left == 1
    assert joined.unmatched_right == 2
    assert joined.groups_emitted == 2


def test_join_with_empty_side_emits_nothing():
    assert list(MergeJoinIterator([], entries(('1', 'a')))) == []
    assert list(MergeJoinIterator(entries(('1', 'a')), [])) == []


@pytest.mark.parametrize('seed', range(5))
def test_join_matches_naive_inner_join(seed):
    rng = random.Random(seed)
    left = sorted(entries(*[(f"{rng.randint(0, 30):03d}", f"l{i}") for i in range(60)]))
    right = sorted(entries(*[(f"{rng.randint(0, 30):03d}", f"r{i}") for i in range(60)]))

    groups = list(MergeJoinIterator(left, right))

    shared = sorted({e.key for e in left} & {e.key for e in right})
    assert [g.key for g in groups] == shared
    for group in groups:
        assert all(e.key == group.key for e in group.left + group.right)
        assert list(group.left) == [e for e in left if e.key == group.key]
        assert list(group.right) == [e for e in right if e.key == group.key]


def test_join_reads_each_entry_at_most_once():
    left = entries(*[(f"{i:04d}", 'l') for i in range(0, 1000, 2)])
    right = entries(*[(f"{i:04d}", 'r') for i in range(0, 1000, 3)])
    joined = MergeJoinIterator(left, right)
    list(joined)
    stats = joined.stats()
    assert stats['left_consumed'] <= len(left)
    assert stats['right_consumed'] <= len(right)
    assert stats['groups_emitted'] == len(range(0, 1000, 6))


def test_join_is_lazy_over_unbounded_streams():
    left = (Entry(f"{i:08d}", 'l') for i in itertools.count())
    right = (Entry(f"{i:08d}", 'r') for i in itertools.count(0, 5))
    joined = MergeJoinIterator(left, right)
    assert [next(joined).key for _ in range(3)] == ['00000000', '00000005', '00000010']


def test_join_is_single_pass():
    joined = MergeJoinIterator(entries(('1', 'a')), entries(('1', 'b')))
    assert len(list(joined)) == 1
    assert list(joined) == []


def test_strict_mode_rejects_decreasing_keys():
    left = entries(('1', 'a'), ('3', 'b'), ('2', 'c'))
    right = entries(('1', 'x'), ('2', 'y'), ('3', 'z'))
    with pytest.raises(OutOfOrderKeyError):
        list(MergeJoinIterator(left, right, strict=True))


def test_lenient_mode_accepts_decreasing_keys():
    left = entries(('1', 'a'), ('3', 'b'), ('2', 'c'))
    right = entries(('1', 'x'), ('3', 'z'))
    groups = list(MergeJoinIterator(left, right))
    assert [g.key for g in groups][:2] == ['1', '3']


def test_from_lines_parses_entries():
    joined = MergeJoinIterator.from_lines(['1;a', '2;b'], ['2;c'])
    assert list(joined) == [JoinedGroup('2', (Entry('2', 'b'),), (Entry('2', 'c'),))]


def test_from_lines_propagates_malformed_lines():
    with pytest.raises(MalformedEntryError):
        list(MergeJoinIterator.from_lines(['1;a', 'garbage'], ['1;b', '2;c']))


def test_join_files_delivers_results_in_key_order(tmp_path):
    left_path = tmp_path / 'left.gz'
    right_path = tmp_path / 'right.gz'
    write_gzip_lines(left_path, [f"{i:05d};left{i}" for i in range(0, 500)])
    write_gzip_lines(right_path, [f"{i:05d};right{i}" for i in range(0, 500, 4)])

    results = []
    config = Config(worker_count=3, batch_size=2, queue_capacity=5, strict_key_order=True)
    joined = join_files(left_path, right_path, lambda group: group.key, config, sink=results.append)

    assert results == [f"{i:05d}" for i in range(0, 500, 4)]
    assert joined.groups_emitted == len(results)
    assert joined.unmatched_right == 0
