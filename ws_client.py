import asyncio, json, argparse, wave, time
from pathlib import Path

import numpy as np
import websockets


def read_wav_samples(path: Path):
    with wave.open(str(path), 'rb') as w:
        if w.getsampwidth() != 2 or w.getnchannels() != 1:
            raise SystemExit('WAV must be mono 16-bit PCM')
        rate = w.getframerate()
        pcm = w.readframes(w.getnframes())
    return np.frombuffer(pcm, dtype='<i2').astype(np.float32) / 32768.0, rate


async def stream_audio(samples: np.ndarray, rate: int, frame_size, uri: str, wait_s: float):
    explicit_frames = frame_size is not None
    async with websockets.connect(uri, max_size=2**23) as ws:
        await ws.send(json.dumps({'type': 'connect'}))
        t_start = time.time()
        streaming = False
        frame_size = frame_size or 4096
        while True:
            try:
                msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=wait_s))
            except asyncio.TimeoutError:
                print('Timeout waiting for events')
                break
            mtype = msg.get('type')
            if mtype == 'audio':
                print('EVENT audio', {k: msg[k] for k in ('seq', 'start', 'duration')})
            else:
                print('EVENT', msg)
            if mtype == 'info' and 'config' in msg and not explicit_frames:
                # server-advertised capture buffer
                frame_size = msg['config'].get('capture_buffer_size', frame_size)
            elif mtype == 'mic_request':
                await ws.send(json.dumps({'type': 'mic', 'granted': True, 'sample_rate': rate}))
            elif mtype == 'state' and msg.get('state') == 'OPEN' and not streaming:
                streaming = True
                for i in range(0, len(samples), frame_size):
                    await ws.send(samples[i:i+frame_size].astype('<f4').tobytes())  # binary frame
                    await asyncio.sleep(frame_size / rate * 0.9)  # pace a bit faster than realtime
                # trailing silence so the server-side VAD closes the turn
                await ws.send(np.zeros(rate, dtype='<f4').tobytes())
            elif mtype == 'turn' and msg.get('role') == 'model':
                print(f'Total session wall time: {time.time()-t_start:.2f}s')
                break
            elif mtype == 'error' or (mtype == 'state' and msg.get('state') == 'IDLE' and streaming):
                break
        await ws.send(json.dumps({'type': 'disconnect'}))


async def main():
    ap = argparse.ArgumentParser(description='Stream a WAV file into the Hey Buddy live bridge')
    ap.add_argument('wav', type=Path, help='Mono 16-bit PCM WAV file')
    ap.add_argument('--uri', default='ws://127.0.0.1:3001/ws')
    ap.add_argument('--frame-size', type=int, default=None, help='Samples per frame (default: server capture_buffer_size)')
    ap.add_argument('--wait', type=float, default=15.0)
    args = ap.parse_args()
    samples, rate = read_wav_samples(args.wav)
    await stream_audio(samples, rate, args.frame_size, args.uri, args.wait)


if __name__ == '__main__':
    asyncio.run(main())
