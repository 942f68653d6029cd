# main.py
"""
Main entry point for the headless boids simulation.

This script orchestrates the entire simulation lifecycle:
1. Loads configuration from `config.json`.
2. Initializes the logging system.
3. Optionally runs the sort self-test diagnostic.
4. Generates the starting particle field and initializes the context.
5. Runs the main simulation loop.
6. Handles clean shutdown.
"""
import logging
import sys
from utils import setup_logging, load_config
import numpy as np
import cProfile
import pstats
import io

SELF_TEST_KEYS = [0, 1, 0, 3, 0, 2, 2, 0, 5, 6]


def run_sort_self_test() -> bool:
    """
    Sorts a fixed key/value fixture and checks the result.

    Returns True when the keys come out non-decreasing and every value is
    still paired with its original key.
    """
    from grid import sort_by_cell

    keys = np.array(SELF_TEST_KEYS, dtype=np.int32)
    values = np.arange(keys.shape[0], dtype=np.int32)
    original_pairs = sorted(zip(keys.tolist(), values.tolist()))

    logging.info(f"Sort self-test input keys:   {keys.tolist()}")
    sort_by_cell(keys, values)
    logging.info(f"Sort self-test sorted keys:  {keys.tolist()}")
    logging.info(f"Sort self-test sorted values: {values.tolist()}")

    ordered = bool(np.all(keys[1:] >= keys[:-1]))
    paired = sorted(zip(keys.tolist(), values.tolist())) == original_pairs
    if ordered and paired:
        logging.info("Sort self-test passed.")
    else:
        logging.error(f"Sort self-test FAILED (ordered={ordered}, paired={paired}).")
    return ordered and paired


def main(config_path: str = 'config.json'):
    """
    The main function to run the simulation.
    """
    # Logging is not set up yet, so we use a print for this one error.
    try:
        config = load_config(config_path)
    except Exception as e:
        print(f"FATAL: Could not load {config_path}. Error: {e}")
        return

    setup_logging(config)

    logging.info("--- Boids Simulation Starting ---")

    sim_params = config['simulation_parameters']
    run_params = config['run_control']

    from particle import generate_initial_state
    from simulation import SimulationContext

    if run_params.get('run_sort_self_test', False):
        if not run_sort_self_test():
            logging.critical("Sort primitive is broken; refusing to run the simulation.")
            return

    # --- Component Initialization ---
    sim = SimulationContext(sim_params)
    particle_count = sim_params.get('particle_count', 5000)
    positions, velocities = generate_initial_state(
        particle_count, sim.scene_scale, sim.max_speed, sim_params.get('seed')
    )
    sim.init(particle_count, positions, velocities)

    profiler = cProfile.Profile()

    log_throttle = run_params.get('log_throttle_steps', 100)
    max_steps = run_params.get('max_steps', 1000)
    profile = run_params.get('profile', True)

    if profile:
        profiler.enable()
    for step_num in range(1, max_steps + 1):
        sim.step()

        # Hot loops must throttle logs
        if step_num % log_throttle == 0:
            logging.info(f"Simulation step {step_num}/{max_steps}")
            _, current_velocities = sim.snapshot()
            avg_speed = np.mean(np.linalg.norm(current_velocities, axis=1))
            logging.debug(f"Step {step_num} | Average Speed: {avg_speed:.4f}")
    if profile:
        profiler.disable()

    logging.info(f"Reached max_steps ({max_steps}). Simulation loop finished.")

    if profile:
        logging.info("--- Performance Profile ---")
        s = io.StringIO()
        # Sort by cumulative time spent in the function
        stats = pstats.Stats(profiler, stream=s).sort_stats('cumtime')
        stats.print_stats(20)
        logging.info(f"\n{s.getvalue()}")

    sim.teardown()
    logging.info("--- Boids Simulation Shutting Down ---")


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else 'config.json')
