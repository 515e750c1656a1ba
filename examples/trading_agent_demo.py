"""
Example usage of the marketrl policy trainer

A synthetic trending price series stands in for a market. The agent sees a
window of recent returns plus its position and chooses buy / hold / sell;
the reward is the position's mark-to-market return.
"""

import numpy as np

from marketrl.config import (
    ExplorationConfig,
    NetworkConfig,
    OptimizerConfig,
    ReplayConfig,
    TrainerConfig,
)
from marketrl.logging import configure_logging, get_logger
from marketrl.reinforcement import PolicyTrainer

logger = get_logger("marketrl.examples")

WINDOW = 8
BUY, HOLD, SELL = 0, 1, 2


class SyntheticMarket:
    """Regime-switching random walk with momentum."""

    def __init__(self, length: int = 200, seed: int = 0):
        self.length = length
        self.rng = np.random.default_rng(seed)
        self.reset()

    def reset(self) -> np.ndarray:
        drift = self.rng.choice([-0.002, 0.002], size=self.length)
        drift = np.repeat(drift[::20], 20)[: self.length]
        self.returns = drift + 0.01 * self.rng.standard_normal(self.length)
        self.t = WINDOW
        self.position = 0.0
        return self._state()

    def _state(self) -> np.ndarray:
        window = self.returns[self.t - WINDOW : self.t] * 100.0
        return np.append(window, self.position).astype(np.float32)

    def step(self, action: int):
        if action == BUY:
            self.position = 1.0
        elif action == SELL:
            self.position = -1.0
        reward = self.position * self.returns[self.t] * 100.0
        self.t += 1
        done = self.t >= self.length
        return self._state(), float(reward), done


def example_1_training_loop():
    """Example 1: Collect, store and update in one loop"""
    print("\n" + "=" * 70)
    print("EXAMPLE 1: Training Loop")
    print("=" * 70)

    config = TrainerConfig(
        replay=ReplayConfig(capacity=5000, batch_size=32),
        network=NetworkConfig(
            state_dim=WINDOW + 1,
            action_dim=3,
            actor_hidden_dims=[64, 32],
            critic_hidden_dims=[64, 32],
        ),
        optimizer=OptimizerConfig(actor_lr=3e-4, critic_lr=1e-3),
        exploration=ExplorationConfig(epsilon_start=1.0, epsilon_decay=0.9),
        update_every=4,
        seed=0,
    )
    trainer = PolicyTrainer(config)
    market = SyntheticMarket(seed=1)

    for episode in range(10):
        state = market.reset()
        total_reward, done, last = 0.0, False, None
        while not done:
            choice = trainer.select_action(state, explore=True)
            next_state, reward, done = market.step(choice.action)
            result = trainer.observe(
                state, choice.action, reward, next_state, done,
                action_prob=choice.probability,
            )
            if result is not None and not result.skipped:
                last = result
            total_reward += reward
            state = next_state

        line = f"  episode {episode:2d} reward={total_reward:8.3f} eps={trainer.get_exploration_rate():.3f}"
        if last is not None:
            line += f" actor_loss={last.actor_loss:.4f} critic_loss={last.critic_loss:.4f}"
        print(line)

    logger.info("Training finished after %d update steps", trainer.state.update_step)
    return trainer


def example_2_greedy_evaluation(trainer: PolicyTrainer):
    """Example 2: Evaluate the greedy policy"""
    print("\n" + "=" * 70)
    print("EXAMPLE 2: Greedy Evaluation")
    print("=" * 70)

    market = SyntheticMarket(seed=42)
    state = market.reset()
    total_reward, done = 0.0, False
    actions = np.zeros(3, dtype=int)
    while not done:
        choice = trainer.select_action(state, explore=False)
        actions[choice.action] += 1
        state, reward, done = market.step(choice.action)
        total_reward += reward

    print(f"  reward={total_reward:.3f} buy/hold/sell={actions.tolist()}")


def example_3_checkpoint(trainer: PolicyTrainer):
    """Example 3: Snapshot and restore"""
    print("\n" + "=" * 70)
    print("EXAMPLE 3: Snapshot and Restore")
    print("=" * 70)

    snapshot = trainer.snapshot_parameters()
    clone = PolicyTrainer(trainer.config)
    clone.load_parameters(snapshot)
    print(f"  restored at update step {clone.state.update_step}")
    for key, value in clone.stats().items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    configure_logging(level="INFO")
    trainer = example_1_training_loop()
    example_2_greedy_evaluation(trainer)
    example_3_checkpoint(trainer)
    print("\n✓ All examples completed")
