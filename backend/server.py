import os

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import dispatch
from orchestrator import Orchestrator
from reasoning_gateway import ReasoningGateway


class EmergencyCallRequest(BaseModel):
    toNumber: str | None = None
    patientData: dict | None = None


class FamilyAlertRequest(BaseModel):
    toNumber: str | None = None
    patientData: dict | None = None
    location: str | None = None


def create_web_app(gateway: ReasoningGateway | None = None) -> FastAPI:
    # One reasoning gateway per process, shared by every incident
    gateway = gateway or ReasoningGateway.from_env()
    web_app = FastAPI(title="Emergency AR Backend")

    @web_app.get("/health")
    async def health():
        return {"status": "ok", "reasoning_configured": gateway.configured}

    @web_app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        print("[Gateway] Phone client connected")
        orch = Orchestrator(ws, gateway)
        try:
            await orch.run()
        except WebSocketDisconnect:
            print("[Gateway] Phone client disconnected")
        except Exception as e:
            print(f"[Gateway] Error: {e}")
        finally:
            await orch.shutdown()
            print("[Gateway] Session cleaned up")

    @web_app.post("/api/emergency-call")
    def emergency_call(req: EmergencyCallRequest):
        print("[Dispatch] === EMERGENCY CALL TRIGGERED ===")
        try:
            result = dispatch.place_emergency_call(req.toNumber, req.patientData)
        except Exception as e:
            print(f"[Dispatch] Emergency call error: {e}")
            return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
        return {
            "success": True,
            "callSid": result["callSid"],
            "message": "Emergency call initiated",
            "report": result["report"],
        }

    @web_app.post("/api/family-alert")
    def family_alert(req: FamilyAlertRequest):
        print("[Dispatch] === FAMILY ALERT TRIGGERED ===")
        try:
            result = dispatch.send_family_sms(req.toNumber, req.patientData, req.location)
        except Exception as e:
            print(f"[Dispatch] Family alert error: {e}")
            return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
        return {
            "success": True,
            "messageSid": result["messageSid"],
            "message": "Family alert sent",
        }

    return web_app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_web_app(), host="0.0.0.0", port=int(os.environ.get("PORT", 8000)))
