import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from edepcal.geometry.channels import TableChannelMap
from edepcal.physics.calorimetry import Calorimetry, FixedGainCalorimetry
from edepcal.physics.diagnostics import AccountingDiagnostics
from edepcal.physics.records import (
    ChargeDeposit,
    Cluster,
    EventData,
    ParticleRecord,
    ReconstructedHit,
    SimChannel,
)
from edepcal.pipelines.core import (
    COLUMNS,
    EventRecord,
    MissingCollectionError,
    ProcessingContext,
    _chunked,
    _iter_chunk_results,
    process_event,
    records_as_columns,
    run_events,
)

CONVERSION = 1e-6 * 1000  # electrons -> MeV


class StubCalo(Calorimetry):
    name = "stub"

    def electrons_from_adc_area(self, area, plane):
        return 2400.0

    def lifetime_correction(self, time, t0=0.0):
        return 1.05


def _ctx(calo=None, view=2):
    return ProcessingContext(
        best_view=view,
        channel_map=TableChannelMap.from_mapping({100: 2, 200: 0}),
        calorimetry=calo or StubCalo(),
        electrons_to_MeV=CONVERSION,
        diagnostics_level=0,
    )


def _scenario(clusters=None, extra_hits=(), extra_channels=()):
    return EventData(
        run=1,
        event=42,
        particles=[ParticleRecord(track_id=1, pdg=11, process="primary", pz=0.5, mass=0.000511, t=0.0)],
        sim_channels=[SimChannel(100, {7: [ChargeDeposit(energy=10.0, num_electrons=2500, track_id=1)]}),
                      *extra_channels],
        hits=[ReconstructedHit(plane=2, integral=500.0, peak_time=100.0), *extra_hits],
        clusters=[] if clusters is None else clusters,
    )


def test_single_electron_scenario():
    rec = process_event(_scenario(), _ctx())

    assert rec.run == 1 and rec.event == 42
    assert np.isclose(rec.gen_momentum, 0.5)
    assert np.isclose(rec.gen_kinetic_MeV, (math.sqrt(0.25 + 0.000511**2) - 0.000511) * 1000)
    assert rec.edep_truth == 10.0
    assert rec.edep_truth_em == 10.0
    assert np.isclose(rec.edep_truth_attenuated, 2500 * CONVERSION)
    assert np.isclose(rec.edep_truth_em_attenuated, 2500 * CONVERSION)
    assert np.isclose(rec.edep, 2400 * 1.05 * CONVERSION)
    assert np.isclose(rec.edep_uncorrected, 2400 * CONVERSION)
    assert rec.edep_clusters == 0.0

    assert np.isclose(rec.ratio_total, rec.edep / 10.0) and rec.ratio_total_valid
    # no clusters: numerator zero, denominator positive -> computed as 0
    assert rec.ratio_em == 0.0 and rec.ratio_em_valid
    # all truth energy is EM -> hadronic denominator 0 -> not computed
    assert rec.ratio_hadronic == 0.0 and not rec.ratio_hadronic_valid


def test_cluster_total_feeds_em_and_hadronic_ratios():
    ev = _scenario(clusters=[Cluster(0, [0])])
    ev.particles.append(ParticleRecord(track_id=2, pdg=2212))
    ev.sim_channels.append(SimChannel(100, {9: [ChargeDeposit(energy=5.0, num_electrons=100, track_id=2)]}))
    rec = process_event(ev, _ctx())

    assert rec.edep_truth == 15.0 and rec.edep_truth_em == 10.0
    assert np.isclose(rec.edep_clusters, rec.edep)
    assert np.isclose(rec.ratio_em, rec.edep_clusters / 10.0)
    assert rec.ratio_hadronic_valid and rec.ratio_hadronic == 0.0


def test_idempotent_on_frozen_inputs():
    ev = _scenario(clusters=[Cluster(0, [0])])
    ctx = _ctx()
    a = process_event(ev, ctx)
    b = process_event(ev, ctx)
    assert a == b
    assert records_as_columns([a])["edep"].tobytes() == records_as_columns([b])["edep"].tobytes()


def test_no_state_carries_between_events():
    ctx = _ctx()
    process_event(_scenario(), ctx)
    empty = EventData(run=1, event=43, particles=[], sim_channels=None, hits=[], clusters=[])
    assert process_event(empty, ctx) == EventRecord(run=1, event=43)


def test_non_selected_plane_items_do_not_change_output():
    ctx = _ctx()
    base = process_event(_scenario(), ctx)
    noisy = process_event(
        _scenario(
            extra_hits=[ReconstructedHit(plane=0, integral=9e4, peak_time=10.0)],
            extra_channels=[SimChannel(200, {1: [ChargeDeposit(99.0, 1e6, -1)]})],
        ),
        ctx,
    )
    assert base == noisy


def test_malformed_hit_does_not_alter_others():
    ctx = _ctx()
    base = process_event(_scenario(), ctx)
    for bad in (-5.0, math.nan):
        rec = process_event(_scenario(extra_hits=[ReconstructedHit(plane=2, integral=bad, peak_time=1.0)]), ctx)
        assert rec == base


@pytest.mark.parametrize("missing", ["particles", "hits", "clusters"])
def test_missing_required_collection_raises(missing):
    ev = _scenario()
    setattr(ev, missing, None)
    with pytest.raises(MissingCollectionError) as info:
        process_event(ev, _ctx())
    assert info.value.collection == missing


def test_missing_truth_deposits_is_zero_truth():
    ev = _scenario()
    ev.sim_channels = None
    rec = process_event(ev, _ctx())
    assert rec.edep_truth == 0.0 and rec.ratio_total == 0.0 and not rec.ratio_total_valid
    assert rec.edep > 0.0


def test_lookup_miss_is_counted_once_per_deposit():
    ev = _scenario()
    ev.sim_channels.append(SimChannel(100, {3: [ChargeDeposit(1.0, 10, 55), ChargeDeposit(1.0, 10, 56)]}))
    diag = AccountingDiagnostics(level=0)
    rec = process_event(ev, _ctx(), diag)
    assert diag.count("particle_not_found") == 2
    assert rec.edep_truth == 12.0 and rec.edep_truth_em == 10.0


def _events(n):
    out = []
    for j in range(n):
        ev = _scenario(clusters=[Cluster(0, [0])])
        ev.event = j
        ev.hits[0].integral = 100.0 + j
        if j % 3 == 2:
            ev.hits = None
        out.append(ev)
    return out


def test_run_events_skips_missing_and_keeps_order():
    ctx = _ctx(calo=FixedGainCalorimetry(2.0))
    records, diag = run_events(_events(7), ctx, workers=0)
    assert [r.event for r in records] == [0, 1, 3, 4, 6]
    assert diag.count("missing_collection") == 2


def test_process_pool_matches_serial():
    ctx = _ctx(calo=FixedGainCalorimetry(2.0))
    serial, d1 = run_events(_events(11), ctx, workers=0)
    pooled, d2 = run_events(_events(11), ctx, workers=2, chunk_events=3)
    assert serial == pooled
    assert d1.reasons == d2.reasons


def test_columns_are_stable():
    cols = records_as_columns([EventRecord(run=3, event=9, ratio_em_valid=True)])
    assert tuple(cols) == COLUMNS
    assert COLUMNS[:3] == ("run", "subrun", "event")
    assert cols["run"].dtype == np.int32
    assert cols["ratio_em_valid"].dtype == np.bool_ and cols["ratio_em_valid"][0]
    assert cols["edep"].dtype == np.float64
    assert records_as_columns([])["edep"].shape == (0,)


def test_bad_cluster_hit_index_does_not_stop_the_run():
    events = []
    for j, idx in enumerate([0, 5, 1]):
        ev = _scenario(clusters=[Cluster(0, [idx])],
                       extra_hits=[ReconstructedHit(plane=2, integral=50.0, peak_time=0.0)])
        ev.event = j
        events.append(ev)
    ctx = _ctx(calo=FixedGainCalorimetry(2.0))

    for workers in (0, 2):
        records, diag = run_events(events, ctx, workers=workers, chunk_events=1)
        assert [r.event for r in records] == [0, 1, 2]
        assert diag.count("cluster_bad_hit_index") == 1
        assert records[1].edep_clusters == 0.0
        assert np.isclose(records[0].edep_clusters, 500.0 * 2.0 * CONVERSION)
        assert np.isclose(records[2].edep_clusters, 50.0 * 2.0 * CONVERSION)


def test_chunks_are_pulled_lazily_with_bounded_in_flight():
    pulled = []

    def stream():
        for ev in _events(20):
            pulled.append(ev.event)
            yield ev

    ctx = _ctx(calo=FixedGainCalorimetry(2.0))
    with ThreadPoolExecutor(max_workers=1) as ex:
        results = _iter_chunk_results(ex, _chunked(stream(), 2), ctx, max_in_flight=3)
        first, _ = next(results)
        # at most three chunks of two events have been read from the stream
        assert len(pulled) <= 6
        rest = dict(results)
    assert len(pulled) == 20
    assert {first, *rest} == set(range(10))
