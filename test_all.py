"""
Component Test Suite for marketrl.
Tests the experience store, networks, targets, gradients and exploration.
"""

import sys

import numpy as np
import torch
from scipy.stats import chisquare

print("=" * 60)
print("MARKETRL - COMPONENT TESTS")
print("=" * 60)


def test_priority_floor():
    print("\n[1/14] Testing Priority Floor...")
    from marketrl.reinforcement import PrioritizedReplayBuffer

    store = PrioritizedReplayBuffer(capacity=8, priority_epsilon=1e-5, seed=0)
    store.add(np.zeros(4), 0, 0.0, np.zeros(4), False)
    store.add(np.zeros(4), 1, -2.5, np.zeros(4), False)
    assert np.allclose(store.priorities(), [1e-5, 2.5 + 1e-5]), "Insert priority wrong"

    store.update_priority(0, 0.0)
    store.update_priority(1, -3.0)
    assert np.allclose(store.priorities(), [1e-5, 1e-5]), "Floor not enforced"

    updated = store.update_priorities([0, 1], [float("nan"), float("inf")])
    assert updated == 2
    assert np.allclose(store.priorities(), [1e-5, 1e-5]), "Non-finite priority kept"

    store.update_priority(0, 0.7)
    assert store.transitions()[0].priority == 0.7, "Read-back priority stale"

    print("  ✓ zero reward, negative, NaN and inf priorities all floored")


def test_ring_eviction():
    print("\n[2/14] Testing Ring Eviction...")
    from marketrl.reinforcement import PrioritizedReplayBuffer

    store = PrioritizedReplayBuffer(capacity=3, seed=0)
    for reward in [1.0, 2.0, 3.0, 4.0]:
        store.add(np.zeros(2), 0, reward, np.zeros(2), False)

    assert len(store) == 3, "Capacity exceeded"
    rewards = [t.reward for t in store.transitions()]
    assert rewards == [2.0, 3.0, 4.0], f"Wrong survivors: {rewards}"
    assert [t.insertion_id for t in store.transitions()] == [1, 2, 3]

    stats = store.stats()
    assert stats["total_added"] == 4 and stats["utilization"] == 1.0

    store.clear()
    assert len(store) == 0 and store.sample(1) is None

    print("  ✓ oldest transition evicted, insertion order preserved")


def test_sampling():
    print("\n[3/14] Testing Prioritized Sampling...")
    from marketrl.reinforcement import PrioritizedReplayBuffer

    store = PrioritizedReplayBuffer(capacity=16, alpha=0.6, beta=0.4, seed=1)
    for i in range(5):
        store.add(np.full(3, i), i % 3, float(i), np.full(3, i + 1), i == 4, 0.5)

    assert store.sample(6) is None, "Under-filled store should not sample"
    assert store.sample(0) is None

    batch = store.sample(5)
    assert len(batch) == 5
    assert len(set(batch.indices.tolist())) == 5, "Sampled with replacement"
    assert np.isclose(batch.weights.max(), 1.0), "Weights not max-normalized"
    assert np.all(batch.weights > 0)
    assert np.all(batch.insertion_ids == batch.indices)

    tensors = batch.to_tensors()
    assert tensors["states"].shape == (5, 3)
    assert tensors["actions"].dtype == torch.long
    assert torch.allclose(tensors["old_probs"], torch.full((5,), 0.5))

    # Lowest-priority transition gets the largest correction.
    lowest = int(np.argmin(batch.probabilities))
    assert batch.weights[lowest] == batch.weights.max()

    annealed = PrioritizedReplayBuffer(capacity=4, beta=0.9, beta_increment=0.06, seed=0)
    for i in range(4):
        annealed.add(np.zeros(1), 0, 1.0, np.zeros(1), False)
    annealed.sample(2)
    annealed.sample(2)
    assert annealed.beta == 1.0, "Beta must anneal and cap at 1"

    print("  ✓ distinct indices, normalized weights, beta annealing")


def test_uniform_when_alpha_zero():
    print("\n[4/14] Testing Uniform Sampling at alpha=0...")
    from marketrl.reinforcement import PrioritizedReplayBuffer

    store = PrioritizedReplayBuffer(capacity=10, alpha=0.0, seed=7)
    for i in range(10):
        store.add(np.zeros(2), 0, float(i * i), np.zeros(2), False)

    counts = np.zeros(10)
    for _ in range(3000):
        batch = store.sample(1)
        counts[batch.indices[0]] += 1

    _, p_value = chisquare(counts)
    assert p_value > 1e-4, f"Sampling not uniform (p={p_value:.2e})"

    print(f"  ✓ chi-square p-value {p_value:.3f}")


def test_evicted_store_samples_uniformly():
    print("\n[5/14] Testing Eviction Then Uniform Sampling...")
    from marketrl.reinforcement import PrioritizedReplayBuffer

    store = PrioritizedReplayBuffer(capacity=3, alpha=0.0, seed=11)
    for reward in [1.0, 2.0, 3.0, 4.0]:
        store.add(np.zeros(2), 0, reward, np.zeros(2), False)

    counts = {2.0: 0, 3.0: 0, 4.0: 0}
    for _ in range(3000):
        batch = store.sample(1)
        counts[batch.transitions[0].reward] += 1

    assert sum(counts.values()) == 3000, f"Evicted transition sampled: {counts}"
    _, p_value = chisquare(list(counts.values()))
    assert p_value > 1e-4, f"Sampling not uniform over survivors: {counts}"

    print(f"  ✓ survivors {counts}, p-value {p_value:.3f}")


def test_non_finite_transition_rejected():
    print("\n[6/14] Testing Non-finite Transitions...")
    from marketrl.errors import InvalidTransitionError
    from marketrl.reinforcement import PrioritizedReplayBuffer

    store = PrioritizedReplayBuffer(capacity=8, seed=0)
    for _ in range(4):
        store.add(np.zeros(2), 0, 1.0, np.ones(2), False)

    for state, reward, next_state, field in (
        (np.zeros(2), float("nan"), np.ones(2), "reward"),
        (np.zeros(2), float("inf"), np.ones(2), "reward"),
        (np.array([0.0, np.nan]), 1.0, np.ones(2), "state"),
        (np.zeros(2), 1.0, np.array([np.inf, 0.0]), "next_state"),
    ):
        try:
            store.add(state, 0, reward, next_state, False)
            raise AssertionError(f"Non-finite {field} accepted")
        except InvalidTransitionError as e:
            assert e.code == "INVALID_TRANSITION"
            assert e.details["field"] == field

    assert len(store) == 4 and store.stats()["total_added"] == 4
    assert np.all(store.priorities() >= 1e-5)
    assert len(store.sample(4)) == 4

    print("  ✓ NaN and inf rewards or states rejected, store still samples")


def test_stale_priority_update():
    print("\n[7/14] Testing Stale Priority Write-back...")
    from marketrl.reinforcement import PrioritizedReplayBuffer

    store = PrioritizedReplayBuffer(capacity=2, seed=0)
    store.add(np.zeros(2), 0, 1.0, np.zeros(2), False)
    store.add(np.zeros(2), 0, 1.0, np.zeros(2), False)
    batch = store.sample(2)

    # Overwrites slot 0 between sampling and write-back.
    store.add(np.zeros(2), 0, 9.0, np.zeros(2), False)

    updated = store.update_priorities(batch.indices, [5.0, 5.0], batch.insertion_ids)
    assert updated == 1, f"Expected one live slot, updated {updated}"
    priorities = store.priorities()
    assert np.isclose(priorities[0], 9.0 + 1e-5), "Stale write landed on new transition"
    assert np.isclose(priorities[1], 5.0)

    print("  ✓ overwritten slot skipped, live slot updated")


def test_networks():
    print("\n[8/14] Testing Actor and Critic...")
    from marketrl.reinforcement import ActorNetwork, CriticNetwork

    actor = ActorNetwork(state_dim=6, action_dim=3, hidden_dims=[16, 16], dropout=0.5, l2=0.01)
    critic = CriticNetwork(state_dim=6, hidden_dims=[16], l2=0.0)
    x = torch.randn(4, 6)

    out = actor(x)
    assert out.probs.shape == (4, 3)
    assert torch.allclose(out.probs.sum(dim=-1), torch.ones(4), atol=1e-6)
    assert out.entropy.shape == (4,)

    actor.train()
    first = actor.infer(x).probs
    second = actor.infer(x).probs
    assert torch.equal(first, second), "Inference must skip dropout"
    assert actor.training, "Inference must not change training mode"
    assert not first.requires_grad

    log_prob, entropy = actor.evaluate_actions(x, torch.tensor([0, 1, 2, 1]))
    assert log_prob.shape == (4,) and entropy.shape == (4,)
    assert torch.all(log_prob <= 0)

    assert actor.l2_penalty().item() > 0
    assert critic.l2_penalty().item() == 0.0

    value = critic(x).value
    assert value.shape == (4,), f"Critic shape wrong: {value.shape}"

    try:
        ActorNetwork(state_dim=2, action_dim=2, activation="swishy")
        raise AssertionError("Unknown activation accepted")
    except ValueError:
        pass

    print("  ✓ ActorNetwork, CriticNetwork, inference path, L2 penalty")


def test_soft_update_convexity():
    print("\n[9/14] Testing Target Soft Update...")
    from marketrl.reinforcement import CriticNetwork, TargetNetwork, TargetSyncState

    critic = CriticNetwork(state_dim=4, hidden_dims=[8])
    target = TargetNetwork(critic, "critic")
    assert target.state == TargetSyncState.SYNCED
    assert target.max_divergence() == 0.0

    before = [p.detach().clone() for p in target.network.parameters()]
    with torch.no_grad():
        for p in critic.parameters():
            p.add_(1.0)
    target.mark_drifting()

    target.soft_update(0.01)
    for old, new, live in zip(before, target.network.parameters(), critic.parameters()):
        expected = 0.01 * live + 0.99 * old
        assert torch.allclose(new, expected, atol=1e-6), "Not a convex combination"
    assert target.state == TargetSyncState.DRIFTING
    assert all(not p.requires_grad for p in target.network.parameters())

    target.hard_update()
    assert target.state == TargetSyncState.SYNCED
    assert target.max_divergence() == 0.0

    for tau in (0.0, 1.5):
        try:
            target.soft_update(tau)
            raise AssertionError(f"tau={tau} accepted")
        except ValueError:
            pass

    print("  ✓ tau-weighted blend, SYNCED/DRIFTING transitions")


def test_joint_gradient_clipping():
    print("\n[10/14] Testing Global-Norm Clipping...")
    from marketrl.reinforcement import GradientProcessor, global_norm

    grads = [torch.tensor([3.0, 0.0]), None, torch.tensor([4.0])]
    assert np.isclose(global_norm(grads).item(), 5.0)

    processor = GradientProcessor(max_norm=1.0)
    result = processor.clip(grads, network="actor")
    assert result.clipped and np.isclose(result.scale, 0.2)
    assert result.gradients[1] is None
    assert torch.allclose(result.gradients[0], torch.tensor([0.6, 0.0]))
    assert torch.allclose(result.gradients[2], torch.tensor([0.8]))
    assert np.isclose(global_norm(result.gradients).item(), 1.0, atol=1e-6)

    small = processor.clip([torch.tensor([0.3])])
    assert not small.clipped and torch.equal(small.gradients[0], torch.tensor([0.3]))

    normalizing = GradientProcessor(max_norm=0.5, normalize=True)
    result = normalizing.process([torch.tensor([0.03, 0.04])])
    assert np.isclose(result.total_norm, 0.05)
    assert np.isclose(global_norm(result.gradients).item(), 0.5, atol=1e-5)

    print("  ✓ single scale across tensors, direction preserved")


def test_divergent_gradient():
    print("\n[11/14] Testing Divergent Gradient Detection...")
    from marketrl.errors import DivergentGradientError
    from marketrl.reinforcement import GradientProcessor

    processor = GradientProcessor(max_norm=0.5)
    try:
        processor.clip([torch.tensor([1.0]), torch.tensor([float("nan")])], network="critic")
        raise AssertionError("NaN gradient accepted")
    except DivergentGradientError as e:
        assert e.network == "critic"
        assert e.code == "DIVERGENT_GRADIENT"

    try:
        processor.process([torch.tensor([float("inf")])], network="actor")
        raise AssertionError("Infinite gradient accepted")
    except DivergentGradientError:
        pass

    print("  ✓ NaN and inf norms rejected")


def test_exploration_schedule():
    print("\n[12/14] Testing Exploration Schedule...")
    from marketrl.reinforcement import ActorNetwork, ExplorationController

    actor = ActorNetwork(state_dim=4, action_dim=3, hidden_dims=[8])
    controller = ExplorationController(
        actor, epsilon_start=0.04, epsilon_min=0.01, epsilon_decay=0.5, seed=0
    )
    assert np.isclose(controller.decay(), 0.02)
    assert np.isclose(controller.decay(), 0.01)
    for _ in range(5):
        assert controller.decay() == 0.01, "Exploration dropped below floor"

    controller.reset()
    assert controller.epsilon == 0.04
    assert controller.visit_counts.sum() == 0

    state = np.ones(4)
    greedy = controller.select_action(state, explore=False)
    probs = actor.infer(torch.ones(1, 4)).probs[0]
    assert greedy.action == int(torch.argmax(probs)) and greedy.strategy == "greedy"
    assert not greedy.explored
    assert np.isclose(greedy.probability, probs[greedy.action].item())

    restored = ExplorationController(actor, epsilon_start=0.5, epsilon_min=0.1)
    restored.load_state_dict({"epsilon": 0.0, "visit_counts": [1, 2, 3]})
    assert restored.epsilon == 0.1
    assert restored.visit_counts.tolist() == [1.0, 2.0, 3.0]

    print("  ✓ floor respected, greedy path, reset and restore")


def test_exploration_strategies():
    print("\n[13/14] Testing Exploration Strategies...")
    from marketrl.reinforcement import (
        ActorNetwork,
        CriticNetwork,
        ExplorationController,
        boltzmann_action,
        ucb_action,
    )

    rng = np.random.default_rng(0)
    assert boltzmann_action(np.array([0.0, 50.0, 0.0]), 0.01, rng) == 1
    assert ucb_action(np.zeros(3), np.array([5.0, 0.0, 5.0]), 1.0) == 1

    actor = ActorNetwork(state_dim=4, action_dim=3, hidden_dims=[8])
    critic = CriticNetwork(state_dim=4, hidden_dims=[8])
    controller = ExplorationController(
        actor,
        epsilon_start=1.0,
        strategy_weights={"uniform": 1.0, "boltzmann": 0.0, "ucb": 0.0},
        critic=critic,
        seed=3,
    )
    picks = [controller.select_action(np.zeros(4)) for _ in range(300)]
    assert all(p.explored and p.strategy == "uniform" for p in picks)
    assert all(p.value is not None for p in picks)
    assert set(p.action for p in picks) == {0, 1, 2}
    assert controller.visit_counts.sum() == 300

    exploit = ExplorationController(actor, epsilon_start=0.0, epsilon_min=0.0, seed=3)
    choice = exploit.select_action(np.zeros(4))
    assert choice.strategy == "policy" and not choice.explored

    # Action 2 dominates the logits of a zero state.
    with torch.no_grad():
        actor.net[-1].bias.copy_(torch.tensor([0.0, 0.0, 5.0]))

    boltzmann = ExplorationController(
        actor, epsilon_start=1.0, strategy_weights={"boltzmann": 1.0}, temperature=0.05, seed=4
    )
    picks = [boltzmann.select_action(np.zeros(4)) for _ in range(50)]
    assert all(p.explored and p.strategy == "boltzmann" for p in picks)
    assert all(p.action == 2 for p in picks), "Cold Boltzmann should follow the logits"
    assert boltzmann.visit_counts.tolist() == [0.0, 0.0, 50.0]

    ucb = ExplorationController(
        actor, epsilon_start=1.0, strategy_weights={"ucb": 1.0}, ucb_coef=5.0, seed=5
    )
    picks = [ucb.select_action(np.zeros(4)) for _ in range(30)]
    assert all(p.explored and p.strategy == "ucb" for p in picks)
    # No visits yet, so the bonus is zero and the first pick is the best action.
    assert picks[0].action == 2
    assert set(p.action for p in picks) == {0, 1, 2}, "UCB bonus never tried other actions"
    assert ucb.visit_counts.sum() == 30
    assert np.all(ucb.visit_counts > 0)

    print("  ✓ uniform, boltzmann, ucb and policy sampling")


def test_targets_and_surrogate():
    print("\n[14/14] Testing Targets and Clipped Surrogate...")
    from marketrl.reinforcement import clipped_surrogate, compute_targets

    targets = compute_targets(
        rewards=torch.tensor([1.0, 2.0]),
        dones=torch.tensor([1.0, 0.0]),
        next_values=torch.tensor([float("nan"), 3.0]),
        gamma=0.9,
    )
    assert not torch.isnan(targets).any(), "Terminal target bootstrapped"
    assert torch.allclose(targets, torch.tensor([1.0, 4.7]))

    new_log_probs = torch.log(torch.tensor([0.9, 0.1]))
    old_probs = torch.tensor([0.5, 0.5])
    advantages = torch.tensor([1.0, -1.0])
    loss, ratio, clipped = clipped_surrogate(new_log_probs, old_probs, advantages, 0.2)
    assert torch.allclose(ratio, torch.tensor([1.8, 0.2]), atol=1e-5)
    assert torch.all(clipped >= 0.8 - 1e-6) and torch.all(clipped <= 1.2 + 1e-6)
    # min(1.8 * 1, 1.2 * 1) = 1.2 and min(0.2 * -1, 0.8 * -1) = -0.8
    assert np.isclose(loss.item(), -(1.2 - 0.8) / 2, atol=1e-5)

    weighted, _, _ = clipped_surrogate(
        new_log_probs, old_probs, advantages, 0.2, weights=torch.tensor([1.0, 0.0])
    )
    assert np.isclose(weighted.item(), -0.6, atol=1e-5)

    print("  ✓ terminal targets, ratio bounds, importance weights")


def main():
    results = []

    tests = [
        ("Priority Floor", test_priority_floor),
        ("Ring Eviction", test_ring_eviction),
        ("Prioritized Sampling", test_sampling),
        ("Uniform Sampling", test_uniform_when_alpha_zero),
        ("Eviction Then Uniform Sampling", test_evicted_store_samples_uniformly),
        ("Non-finite Transitions", test_non_finite_transition_rejected),
        ("Stale Priority Write-back", test_stale_priority_update),
        ("Networks", test_networks),
        ("Target Soft Update", test_soft_update_convexity),
        ("Global-Norm Clipping", test_joint_gradient_clipping),
        ("Divergent Gradient", test_divergent_gradient),
        ("Exploration Schedule", test_exploration_schedule),
        ("Exploration Strategies", test_exploration_strategies),
        ("Targets and Surrogate", test_targets_and_surrogate),
    ]

    passed = 0
    failed = 0

    for name, test_fn in tests:
        try:
            test_fn()
            passed += 1
            results.append((name, True, None))
        except Exception as e:
            failed += 1
            results.append((name, False, str(e)))
            print(f"  ✗ FAILED: {e}")

    print("\n" + "=" * 60)
    print("TEST RESULTS SUMMARY")
    print("=" * 60)

    for name, success, error in results:
        status = "✓ PASS" if success else "✗ FAIL"
        print(f"  {status}: {name}")
        if error:
            print(f"         Error: {error[:50]}...")

    print("-" * 60)
    print(f"Total: {passed} passed, {failed} failed out of {len(tests)} tests")
    print("=" * 60)

    return failed == 0


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
