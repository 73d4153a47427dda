# lmips/app.py
from flask import Flask, request, jsonify
from flask_cors import CORS
import logging

from lmips.mips_assembler import MipsAssembler
from lmips.mips_container import ContainerFormatError, read_object
from lmips.mips_errors import AssemblerError
from lmips.mips_program import Program
from lmips.mips_simulator import MipsSimulator

#logging.basicConfig(level=logging.DEBUG) # Use DEBUG for development
logger = logging.getLogger(__name__)

# Instantiate services
assembler = MipsAssembler()
simulator = MipsSimulator()

app = Flask(__name__)
# Adjust CORS for your frontend origin if different
CORS(app, resources={r"/api/*": {"origins": "http://localhost:3000"}})


def _bad_request(message, error_type="BadRequest"):
    return jsonify({"errors": [{"type": error_type, "message": message}]}), 400


def _hex_bytes(value, key):
    """Decodes a hex string from the request body, allowing an optional 0x prefix."""
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a hex string")
    if value[:2].lower() == "0x":
        value = value[2:]
    return bytes.fromhex(value)


@app.route('/')
def index():
    return "lmips backend is running!"

@app.route('/api/ping', methods=['GET'])
def ping():
    logger.debug("Ping endpoint called")
    return jsonify({"message": "pong"})

# --- Assemble Endpoint ---
@app.route('/api/assemble', methods=['POST'])
def handle_assemble():
    """Assembles a JSON program model into an object container."""
    data = request.get_json(silent=True)
    if not data or 'program' not in data or not isinstance(data['program'], dict):
        return _bad_request("Missing 'program' object in request.")
    try:
        program = Program.from_dict(data['program'])
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Malformed program model: {e}")
        return _bad_request(f"Malformed program: {e}")

    try:
        obj = assembler.assemble(program)
    except AssemblerError as e:
        return jsonify({"errors": [e.to_dict()]}), 400
    except Exception as e:
        logger.error(f"Error during assembly: {e}", exc_info=True)
        return jsonify({"errors": [{"type": "InternalError", "message": f"Internal server error during assembly: {e}"}]}), 500

    logger.debug(f"Assembly successful. Object size: {len(obj)} bytes")
    return jsonify({
        "object": obj.hex(),
        "code": [f"0x{word:08x}" for word in assembler.machine_code],
        "data": bytes(assembler.data_segment).hex(),
        "entry": assembler.entry,
        "sections": [section.to_dict() for section in assembler.sections],
    })

# --- Simulation Endpoints ---

@app.route('/api/simulate/load', methods=['POST'])
def handle_simulate_load():
    """Loads an object container, or raw code and data, into the simulator."""
    data = request.get_json(silent=True)
    if not data:
        return _bad_request("Missing 'object' or 'code' in request.")
    try:
        if 'object' in data:
            obj = read_object(_hex_bytes(data['object'], 'object'))
            code, data_image, entry = obj.code, obj.data, obj.code_entry
        elif 'code' in data:
            code = _hex_bytes(data['code'], 'code')
            data_image = _hex_bytes(data.get('data', ""), 'data')
            entry = int(data.get('entry', 0))
        else:
            return _bad_request("Missing 'object' or 'code' in request.")
    except ContainerFormatError as e:
        logger.warning(f"Rejected object: {e}")
        return _bad_request(str(e), "ContainerFormatError")
    except (TypeError, ValueError) as e:
        return _bad_request(str(e))

    try:
        success = simulator.load_program(code, data_image, entry)
    except Exception as e:
        logger.error(f"Error during simulation load: {e}", exc_info=True)
        return jsonify({"error": f"Internal server error during simulation load: {e}"}), 500

    if success:
        logger.info("Program loaded into simulator successfully.")
        return jsonify(simulator.get_state())
    logger.error(f"Simulator failed to load program. Error: {simulator.error_message}")
    return jsonify(simulator.get_state()), 400


@app.route('/api/simulate/step', methods=['POST'])
def handle_simulate_step():
    """Executes one step in the simulator."""
    if simulator.state != "running":
        return jsonify({"error": f"Simulator not in a state that can step (state={simulator.state})."}), 400
    try:
        state = simulator.step()
        logger.debug(f"Step completed. New state: {state['state']}, PC: 0x{state['pc']:08x}")
        return jsonify(state)
    except Exception as e:
        logger.error(f"Error during simulation step: {e}", exc_info=True)
        current_state = simulator.get_state()
        current_state["error"] = current_state.get("error") or f"Internal server error during step: {e}"
        return jsonify(current_state), 500


@app.route('/api/simulate/run', methods=['POST'])
def handle_simulate_run():
    """Runs the loaded program until it halts, faults, or hits 'max_steps'."""
    if simulator.state != "running":
        return jsonify({"error": f"Simulator not in a state that can run (state={simulator.state})."}), 400
    data = request.get_json(silent=True) or {}
    max_steps = data.get('max_steps')
    if max_steps is not None and (not isinstance(max_steps, int) or isinstance(max_steps, bool) or max_steps < 0):
        return _bad_request("'max_steps' must be a non-negative integer.")
    try:
        state = simulator.run(max_steps=max_steps)
        logger.debug(f"Run stopped. State: {state['state']}, steps: {state['steps']}")
        return jsonify(state)
    except Exception as e:
        logger.error(f"Error during simulation run: {e}", exc_info=True)
        current_state = simulator.get_state()
        current_state["error"] = current_state.get("error") or f"Internal server error during run: {e}"
        return jsonify(current_state), 500


@app.route('/api/simulate/reset', methods=['POST'])
def handle_simulate_reset():
    """Resets the simulator to its initial state (before loading)."""
    logger.info("Resetting simulator.")
    simulator.reset()
    return jsonify(simulator.get_state())

@app.route('/api/simulate/state', methods=['GET'])
def handle_simulate_get_state():
    """Gets the current state of the simulator without executing."""
    return jsonify(simulator.get_state())


if __name__ == '__main__':
    # Or run with `python -m flask --app lmips.app run --port 5001` from the repository root
    app.run(debug=False, port=5001)
